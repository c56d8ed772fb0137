#!/usr/bin/env python3
"""
引擎日志处理测试
"""
from singbox_gui.core.log_processor import (
    LogProcessor,
    classify_line,
    is_fatal,
    normalize_message,
    should_forward,
    strip_ansi,
)


def _connection_line(i: int) -> str:
    return (f"+0800 2024-01-01 12:00:{i % 60:02d} INFO [{1000 + i} {i}ms] "
            f"inbound/socks[socks-in]: inbound connection from 127.0.0.1:{50000 + i}")


def test_strip_and_classify():
    """去除颜色码并识别级别"""
    print("Testing classification...")

    assert strip_ansi("\x1b[31mERROR\x1b[0m boom") == "ERROR boom"

    level, message = classify_line("+0800 2024-01-01 12:00:00 ERROR [123 0ms] dial tcp: i/o timeout")
    assert level == "error"
    assert message == "[123 0ms] dial tcp: i/o timeout"

    assert classify_line("FATAL[0000] start service: bind failed") == ("fatal", "start service: bind failed")
    assert classify_line("PANIC runtime error")[0] == "fatal"
    assert classify_line("WARN slow dns")[0] == "warn"
    assert classify_line("[WARNING] deprecated field")[0] == "warn"
    assert classify_line("DEBUG tick")[0] == "debug"
    assert classify_line("TRACE tick")[0] == "debug"
    assert classify_line("plain text") == ("info", "plain text")

    print("  ✓ 级别识别正确")


def test_fatal_detection():
    """致命错误检测排除单连接网络错误"""
    print("Testing fatal detection...")

    assert is_fatal("fatal", "start service: listen tcp 127.0.0.1:1080: bind: address already in use")
    assert is_fatal("error", "panic: runtime error: invalid memory address")
    assert is_fatal("error", "start service: initialize router")

    assert not is_fatal("error", "dial tcp 1.2.3.4:443: i/o timeout")
    assert not is_fatal("error", "connect: connection refused")
    assert not is_fatal("error", "lookup h.example: no such host")
    assert not is_fatal("error", "read: connection reset by peer")
    assert not is_fatal("error", "context deadline exceeded")
    assert is_fatal("fatal", "start service: decode config: unexpected EOF"), "FATAL 级别不按网络错误排除"
    assert is_fatal("fatal", "lookup h.example: no such host")
    assert not is_fatal("error", "panic in handler: read: EOF")
    assert not is_fatal("info", "panic recovered in handler")
    assert not is_fatal("error", "inbound/http: process connection failed")

    print("  ✓ 致命错误检测正确")


def test_normalization():
    """易变片段归一化后重复行视为相同"""
    print("Testing normalization...")

    first = classify_line(_connection_line(1))[1]
    second = classify_line(_connection_line(37))[1]
    assert first != second
    assert normalize_message(first) == normalize_message(second)

    assert normalize_message("took 1.5s") == normalize_message("took 250ms")
    assert normalize_message("id 0xdeadbeef") == normalize_message("id 0x1234")
    assert normalize_message("dial a.example") != normalize_message("dial b.example")

    print("  ✓ 归一化正确")


def test_repeat_schedule():
    assert [n for n in range(1, 501) if should_forward(n)] == [1, 10, 100, 200, 300, 400, 500]


def test_coalescing():
    """重复日志只转发第 1、10、100、200 次，序列结束时输出汇总"""
    print("Testing coalescing...")

    processor = LogProcessor()
    forwarded = []
    for i in range(250):
        records, fatal = processor.feed(_connection_line(i))
        assert fatal is None
        forwarded.extend(records)

    assert len(forwarded) == 4, f"应该转发 4 条，实际 {len(forwarded)}"
    assert all(r.source == "sing-box" and r.level == "info" for r in forwarded)

    records, _ = processor.feed("INFO router: updated default interface")
    assert [r.message for r in records] == [
        "previous message repeated 249 times",
        "router: updated default interface",
    ]

    print("  ✓ 重复日志合并正确")


def test_flush_reset_and_blank_lines():
    """flush 输出汇总，reset 清空状态，空行被丢弃"""
    processor = LogProcessor()

    assert processor.feed("") == ([], None)
    assert processor.feed("   \n") == ([], None)
    assert processor.flush() == []

    for _ in range(3):
        processor.feed("INFO hello")
    summary = processor.flush()
    assert [r.message for r in summary] == ["previous message repeated 2 times"]
    assert processor.last_line == "INFO hello"

    processor.feed("INFO hello")
    processor.feed("INFO hello")
    processor.reset()
    assert processor.last_line == ""
    records, _ = processor.feed("INFO hello")
    assert [r.message for r in records] == ["hello"], "reset 之后重新计数"


def test_fatal_line_reported():
    processor = LogProcessor()
    records, fatal = processor.feed("\x1b[31mFATAL\x1b[0m[0000] start service: create service: bind failed")
    assert fatal == "start service: create service: bind failed"
    assert records[0].level == "fatal"
    assert "[FATAL] [sing-box] start service" in records[0].format()

    records, fatal = processor.feed("+0800 2024-01-01 12:00:00 FATAL[0000] start service: decode config at config.json: unexpected EOF")
    assert records[0].level == "fatal"
    assert fatal == "start service: decode config at config.json: unexpected EOF", "包含 EOF 的 FATAL 日志也要上报"


if __name__ == "__main__":
    print("🧪 开始日志处理测试...")
    test_strip_and_classify()
    test_fatal_detection()
    test_normalization()
    test_repeat_schedule()
    test_coalescing()
    test_flush_reset_and_blank_lines()
    test_fatal_line_reported()
    print("🎉 所有日志处理测试通过！")
