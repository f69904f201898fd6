"""
Tests for the crash dump state machine.
"""

from structlog.testing import capture_logs

from panic_report.parser import parse_trace


class TestParseSegfault:
    """A nil pointer dereference with a signal line."""

    def test_failure(self, segfault_dump):
        trace = parse_trace(segfault_dump)
        failure = trace.failure

        assert failure.kind == "runtime error"
        assert failure.description == "invalid memory address or nil pointer dereference"
        assert failure.synthetic is True
        assert failure.signal_name == "SIGSEGV"
        assert failure.signal_description == "segmentation violation"
        assert failure.code == "0xffffffff"
        assert failure.address == "0x0"
        assert failure.program_counter == "0x20314"
        assert failure.context_id == "1"

    def test_frames_in_dump_order(self, segfault_dump):
        trace = parse_trace(segfault_dump)

        assert len(trace.contexts) == 1
        context = trace.contexts[0]
        assert context.id == "1"
        assert context.state == "running"
        assert context.frames_elided is False

        builtin, entry = context.frames
        assert builtin.module == ""
        assert builtin.function_name == "panic"
        assert builtin.arguments == ["0x112c00", "0x1040a038"]
        assert builtin.file == "/usr/local/go/src/runtime/panic.go"
        assert builtin.line == 500
        assert builtin.stack_offset == 0x720

        assert entry.module == "main"
        assert entry.function_name == "main"
        assert entry.file == "/tmp/sandbox675251439/main.go"
        assert entry.line == 23
        assert entry.stack_offset == 0x314


class TestParsePlainPanic:
    """A panic raised by application code, no signal."""

    def test_failure(self, server_dump):
        failure = parse_trace(server_dump).failure

        assert failure.kind == "oh my god"
        assert failure.description == ""
        assert failure.synthetic is False
        assert failure.signal_name is None
        assert failure.has_signal is False
        assert failure.context_id == "86"

    def test_frames(self, server_dump):
        context = parse_trace(server_dump).contexts[0]

        assert [frame.qualified_function for frame in context.frames] == [
            "Server.ReportDynamicInfo",
            "Server.processUnaryRPC",
            "Server.serveStreams.func1.1",
            "Server.serveStreams.func1",
        ]
        assert context.frames[0].module == "github.com/example/shop/internal/endpoints"
        assert context.frames[0].arguments == ["0x58?", "{0x1419348, 0xc0004924b0}", "0x2?"]
        assert context.frames[-1].created_by is True
        assert context.frames[-1].line == 980

    def test_description_with_colon_kept_whole_without_signal(self):
        trace = parse_trace("panic: config: missing key\n\ngoroutine 1 [running]:\n")

        assert trace.failure.kind == "config: missing key"
        assert trace.failure.description == ""


class TestParseMultipleContexts:

    def test_contexts(self, multi_goroutine_dump):
        trace = parse_trace(multi_goroutine_dump)

        assert [context.id for context in trace.contexts] == ["1", "2"]
        assert [context.state for context in trace.contexts] == ["running", "chan receive"]
        assert trace.failure.context_id == "1"
        assert trace.frame_count == 5

    def test_second_context_frames(self, multi_goroutine_dump):
        context = parse_trace(multi_goroutine_dump).get_context("2")

        assert [frame.function_name for frame in context.frames] == ["anotherFunction", "main"]
        assert context.frames[1].created_by is True
        assert context.frames[1].file == "/path/to/main.go"
        assert context.frames[1].line == 25
        assert context.frames[1].stack_offset == 0

    def test_first_listed_context_owns_failure(self):
        dump = (
            "panic: boom\n"
            "\n"
            "goroutine 5 [running]:\n"
            "main.a()\n"
            "\t/app/a.go:1\n"
            "\n"
            "goroutine 1 [select]:\n"
            "main.main()\n"
            "\t/app/main.go:2\n"
        )

        assert parse_trace(dump).failure.context_id == "5"

    def test_elided_frames(self, elided_dump):
        trace = parse_trace(elided_dump)

        first, second = trace.contexts
        assert first.frames_elided is True
        assert len(first.frames) == 2
        assert first.frames[0].arguments == ["..."]
        assert second.id == "7"
        assert second.frames_elided is False
        assert second.frames[0].function_name == "worker"


class TestParseEdgeCases:
    """Inputs that bend the grammar."""

    def test_no_panic_header(self, no_panic_dump):
        assert parse_trace(no_panic_dump) is None
        assert parse_trace("") is None

    def test_header_only(self):
        trace = parse_trace("panic: boom")

        assert trace.failure.kind == "boom"
        assert trace.contexts == []
        assert trace.failure.context_id is None

    def test_empty_failure_text(self):
        assert parse_trace("panic: \n").failure.kind == "crash"

    def test_text_before_header_is_ignored(self):
        dump = "starting server\nlistening on :8080\npanic: boom\n\ngoroutine 1 [running]:\n"

        trace = parse_trace(dump)
        assert trace.failure.kind == "boom"
        assert len(trace.contexts) == 1

    def test_context_header_right_after_failure(self):
        trace = parse_trace("panic: boom\ngoroutine 3 [running]:\nmain.main()\n\t/app/main.go:4\n")

        assert trace.failure.context_id == "3"
        assert trace.contexts[0].frames[0].line == 4

    def test_consecutive_headers(self):
        trace = parse_trace(
            "panic: boom\n\ngoroutine 1 [running]:\ngoroutine 2 [sleep]:\n"
        )

        assert [context.id for context in trace.contexts] == ["1", "2"]
        assert all(context.frames == [] for context in trace.contexts)

    def test_missing_location_drops_until_next_header(self):
        dump = (
            "panic: x\n"
            "\n"
            "goroutine 1 [running]:\n"
            "main.a()\n"
            "garbage here\n"
            "main.b()\n"
            "\t/app/b.go:3\n"
            "goroutine 2 [running]:\n"
            "main.c()\n"
            "\t/app/c.go:1\n"
        )

        first, second = parse_trace(dump).contexts
        assert [frame.function_name for frame in first.frames] == ["a"]
        assert first.frames[0].file == ""
        assert first.frames[0].line == 0
        assert [frame.function_name for frame in second.frames] == ["c"]

    def test_dotted_package_frames(self):
        dump = (
            "panic: yaml: unmarshal errors\n"
            "\n"
            "goroutine 1 [running]:\n"
            "gopkg.in/yaml.v3.(*decoder).unmarshal(0xc000100000, {0x1, 0x2})\n"
            "\t/home/dev/go/pkg/mod/gopkg.in/yaml.v3@v3.0.1/decode.go:490 +0x4a\n"
            "gopkg.in/yaml.v3.Unmarshal({0xc0001, 0x10, 0x10}, {0x4a1b20, 0xc0002})\n"
            "\t/home/dev/go/pkg/mod/gopkg.in/yaml.v3@v3.0.1/yaml.go:89 +0x3d\n"
            "main.main()\n"
            "\t/app/main.go:12 +0x25\n"
        )

        method, function, entry = parse_trace(dump).contexts[0].frames
        assert method.module == "gopkg.in/yaml.v3"
        assert method.qualified_function == "decoder.unmarshal"
        assert method.is_pointer_receiver is True
        assert method.arguments == ["0xc000100000", "{0x1, 0x2}"]
        assert method.line == 490
        assert function.module == "gopkg.in/yaml.v3"
        assert function.qualified_function == "Unmarshal"
        assert function.line == 89
        assert entry.module == "main"
        assert entry.line == 12

    def test_non_numeric_context_id(self):
        trace = parse_trace("panic: boom\n\ngoroutine abc [running]:\nmain.main()\n\t/app/main.go:1\n")

        assert trace.contexts[0].id == "abc"
        assert trace.failure.context_id == "abc"

    def test_newer_runtime_header(self):
        trace = parse_trace(
            "panic: boom\n\ngoroutine 1 gp=0xc000002380 m=0 mp=0x5a1b20 [running]:\n"
        )

        assert trace.contexts[0].id == "1"
        assert trace.contexts[0].state == "running"

    def test_malformed_offset_logged(self):
        dump = "panic: boom\n\ngoroutine 1 [running]:\nmain.main()\n\t/app/main.go:5 +0xZZ\n"

        with capture_logs() as logs:
            trace = parse_trace(dump)

        frame = trace.contexts[0].frames[0]
        assert frame.line == 5
        assert frame.stack_offset == 0
        warnings = [entry for entry in logs if entry["log_level"] == "warning"]
        assert warnings[0]["field"] == "stack_offset"

    def test_malformed_signal_field_dropped(self):
        dump = "panic: runtime error: bad\n[signal SIGBUS: bus error code=zz addr=0x1 pc=0x2]\n"

        with capture_logs() as logs:
            failure = parse_trace(dump).failure

        assert failure.signal_name == "SIGBUS"
        assert failure.code is None
        assert failure.address == "0x1"
        assert failure.program_counter == "0x2"
        assert any(entry.get("field") == "code" for entry in logs)

    def test_signal_description_keeps_unknown_tokens(self):
        dump = (
            "panic: runtime error: bad\n"
            "[signal SIGSEGV: segmentation violation code=0x1 addr=0x0 pc=0x1 sigcode=7 extra]\n"
        )

        failure = parse_trace(dump).failure
        assert failure.signal_description == "segmentation violation sigcode=7 extra"

    def test_windows_line_endings(self, segfault_dump):
        trace = parse_trace(segfault_dump.replace("\n", "\r\n"))

        assert trace.failure.signal_name == "SIGSEGV"
        assert trace.contexts[0].frames[1].file == "/tmp/sandbox675251439/main.go"

    def test_iterable_of_lines(self, segfault_dump, tmp_path):
        path = tmp_path / "crash.txt"
        path.write_text(segfault_dump)

        with open(path) as f:
            trace = parse_trace(f)

        assert trace.to_dict() == parse_trace(segfault_dump).to_dict()


def test_frame_order_preserved():
    lines = ["panic: deep", "", "goroutine 1 [running]:"]
    for i in range(1, 21):
        lines.append(f"main.f{i}()")
        lines.append(f"\t/app/main.go:{i}")

    frames = parse_trace("\n".join(lines)).contexts[0].frames

    assert [frame.function_name for frame in frames] == [f"f{i}" for i in range(1, 21)]
    assert [frame.line for frame in frames] == list(range(1, 21))


def test_reparse_is_stable(multi_goroutine_dump):
    assert parse_trace(multi_goroutine_dump).to_dict() == parse_trace(multi_goroutine_dump).to_dict()
