# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import doctest
import importlib
import logging
import os
import sys
import unittest
from argparse import ArgumentParser
from pathlib import Path
from pathlib import PurePath
from typing import Collection
from typing import List


def main(args):
    parser = ArgumentParser(description="Unit tests from tests dirs and examples from docstrings")
    parser.add_argument(
        'packages',
        nargs='*',
        help="top-level packages or modules to test, default: all",
        )
    parser.add_argument('--no-doctest', action='store_true')
    parsed_args = parser.parse_args(args)
    suite = unittest.TestSuite()
    for python_file in _walk(exclude=['venv', 'linter']):
        module_name = _build_module_name(python_file)
        if parsed_args.packages and module_name.split('.')[0] not in parsed_args.packages:
            continue
        if _is_test_module(python_file):
            module = importlib.import_module(module_name)
            scope = unittest.defaultTestLoader.loadTestsFromModule(module)
        elif not parsed_args.no_doctest and python_file.name != '__main__.py':
            module = importlib.import_module(module_name)
            scope = doctest.DocTestSuite(module)
        else:
            continue
        if scope.countTestCases() > 0:
            logging.debug("Will run: %s: %d tests", module_name, scope.countTestCases())
            suite.addTests(scope)
    if os.getenv('DRY_RUN'):
        _logger.info("Dry run: would run %d tests", suite.countTestCases())
        return 0
    logging.info("Run %d tests", suite.countTestCases())
    runner = unittest.TextTestRunner(stream=sys.stdout, verbosity=2)
    result = runner.run(suite)
    if result.wasSuccessful():
        return 0
    else:
        return 10


def _is_test_module(path: PurePath) -> bool:
    return path.parent.name in ('tests', 'self_tests') and path.name.startswith('test_')


def _walk(*, exclude: Collection[str]) -> List[Path]:
    """Python files under the root; hidden and excluded dirs are skipped.

    >>> files = _walk(exclude=['venv'])
    >>> _root / 'sequencer' / 'tests' / 'test_sequencer.py' in files
    True
    """
    excluded = {_root / x for x in exclude}
    stack = [_root]
    result = []
    while stack:
        f = stack.pop()
        if f.name.startswith('.') or f.name == '__pycache__' or f in excluded:
            logging.debug("Skip: %s", f)
        elif f.is_dir():
            stack.extend(sorted(f.iterdir(), reverse=True))
        elif f.suffix == '.py':
            result.append(f)
    return result


def _build_module_name(path: PurePath):
    """Build module name from path.

    >>> _build_module_name(_root / 'vm/qemu/_fleet.py')
    'vm.qemu._fleet'
    """
    path = path.relative_to(_root)
    path = path.with_suffix('')
    return '.'.join(path.parts)


_logger = logging.getLogger(__name__)
_root = Path(__file__).parent.parent
assert str(_root) in sys.path

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    exit(main(sys.argv[1:]))
