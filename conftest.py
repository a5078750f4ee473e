import os
import signal
import logging
import pytest

# Keep DEBUG noise from the harness itself out of test output.
logging.getLogger('conftest').setLevel(logging.INFO)

# Reduce BLAS/OpenMP/MKL thread counts during tests to avoid parallel deadlocks
# (numpy and scikit-learn both link against threaded BLAS builds).
os.environ.setdefault('OMP_NUM_THREADS', '1')
os.environ.setdefault('OPENBLAS_NUM_THREADS', '1')
os.environ.setdefault('MKL_NUM_THREADS', '1')
os.environ.setdefault('VECLIB_MAXIMUM_THREADS', '1')
os.environ.setdefault('NUMEXPR_NUM_THREADS', '1')

# Never let a test pick up the developer's own config file or storage dir.
os.environ.setdefault('LIPID_ESTIMATOR_CONFIG', os.path.join(os.path.dirname(__file__), '.pytest_no_config.json'))

# Default per-test timeout in seconds. Can be overridden with TEST_TIMEOUT env var.
DEFAULT_TIMEOUT = int(os.environ.get('TEST_TIMEOUT', '15'))


def _raise_timeout(signum, frame):
    raise TimeoutError(f"Test exceeded timeout of {DEFAULT_TIMEOUT}s")


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_setup(item):
    # Only set alarm on POSIX-like systems where signal.alarm exists
    if hasattr(signal, 'alarm'):
        timeout = int(os.environ.get('TEST_TIMEOUT', str(DEFAULT_TIMEOUT)))
        signal.signal(signal.SIGALRM, _raise_timeout)
        signal.alarm(timeout)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_teardown(item, nextitem):
    if hasattr(signal, 'alarm'):
        signal.alarm(0)
