"""
Shared fixtures for panic-report tests.

Sample dumps follow the layout the Go runtime prints on a fatal panic.
"""

import sys

import pytest
import structlog

from panic_report.normalizer import InAppClassifier


SEGFAULT_DUMP = """\
panic: runtime error: invalid memory address or nil pointer dereference
[signal SIGSEGV: segmentation violation code=0xffffffff addr=0x0 pc=0x20314]

goroutine 1 [running]:
panic(0x112c00, 0x1040a038)
\t/usr/local/go/src/runtime/panic.go:500 +0x720
main.main()
\t/tmp/sandbox675251439/main.go:23 +0x314
"""

SERVER_DUMP = """\
panic: oh my god

goroutine 86 [running]:
github.com/example/shop/internal/endpoints.(*Server).ReportDynamicInfo(0x58?, {0x1419348, 0xc0004924b0}, 0x2?)
\t/home/dev/src/shop/internal/endpoints/endpoints.go:868 +0x386
google.golang.org/grpc.(*Server).processUnaryRPC(0xc0002a8000, {0x141e420, 0xc0003fcf00}, 0xc0003bafc0, 0xc000391710, 0x1c175f8, 0x0)
\t/home/dev/go/pkg/mod/google.golang.org/grpc@v1.57.0/server.go:1360 +0xe23
google.golang.org/grpc.(*Server).serveStreams.func1.1()
\t/home/dev/go/pkg/mod/google.golang.org/grpc@v1.57.0/server.go:982 +0x98
created by google.golang.org/grpc.(*Server).serveStreams.func1
\t/home/dev/go/pkg/mod/google.golang.org/grpc@v1.57.0/server.go:980 +0x18c
"""

MULTI_GOROUTINE_DUMP = """\
panic: Something went wrong in packageA.foo()

goroutine 1 [running]:
github.com/user/packageA.foo()
\t/path/to/packageA/foo.go:10
github.com/user/packageB.bar()
\t/path/to/packageB/bar.go:15
main.main()
\t/path/to/main.go:8

goroutine 2 [chan receive, 5 minutes, locked to thread]:
main.anotherFunction()
\t/path/to/main.go:20
created by main.main in goroutine 1
\t/path/to/main.go:25
"""

ELIDED_DUMP = """\
panic: boom

goroutine 1 [running]:
main.recurse(...)
\t/app/main.go:5 +0x1d
main.recurse(...)
\t/app/main.go:5 +0x1d
...additional frames elided...

goroutine 7 [select]:
main.worker()
\t/app/worker.go:12 +0x40
"""

NO_PANIC_DUMP = """\
goroutine 1 [running]:
main.main()
\t/app/main.go:8 +0x1d
exit status 2
"""


@pytest.fixture(autouse=True)
def structlog_to_stderr():
    """Route structlog output to stderr without caching, so capture_logs works."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer(key_order=["event"])],
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def classifier():
    """In-app classifier independent of the host's GOROOT."""
    return InAppClassifier(goroots=["/usr/local/go/"])


@pytest.fixture
def segfault_dump():
    return SEGFAULT_DUMP


@pytest.fixture
def server_dump():
    return SERVER_DUMP


@pytest.fixture
def multi_goroutine_dump():
    return MULTI_GOROUTINE_DUMP


@pytest.fixture
def elided_dump():
    return ELIDED_DUMP


@pytest.fixture
def no_panic_dump():
    return NO_PANIC_DUMP
