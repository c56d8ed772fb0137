#!/usr/bin/env python3
"""
错误处理测试
"""
from singbox_gui.core.error_handler import (
    ErrorCategory,
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    describe_engine_exit,
    explain_engine_line,
    translate_engine_error,
)
from singbox_gui.core.exceptions import (
    LinkParseError,
    MissingCredentialError,
    NoProfileSelectedError,
    StartupFailedError,
    UnsupportedSchemeError,
)


def test_known_error_codes():
    """预定义错误代码带有严重程度、消息和建议"""
    print("Testing predefined error codes...")

    error_handler = ErrorHandler()

    test_cases = [
        {
            'category': ErrorCategory.PROTOCOL_PARSING,
            'code': 'protocol_parsing_invalid_link',
            'details': 'vless://uuid@host:abc',
            'context': {'parser': 'VLess'},
            'severity': ErrorSeverity.ERROR,
        },
        {
            'category': ErrorCategory.CONFIG_COMPILE,
            'code': 'config_compile_no_profile',
            'severity': ErrorSeverity.ERROR,
        },
        {
            'category': ErrorCategory.ENGINE_PROCESS,
            'code': 'engine_process_start_failed',
            'details': 'FATAL[0000] start service: bind failed',
            'context': {'exit_code': 1},
            'severity': ErrorSeverity.CRITICAL,
        },
        {
            'category': ErrorCategory.ENGINE_PROCESS,
            'code': 'engine_shutdown_timeout',
            'context': {'pid': 1234, 'stop_timeout': 5.0},
            'severity': ErrorSeverity.WARNING,
        },
        {
            'category': ErrorCategory.RESOURCE,
            'code': 'resource_download_failed',
            'details': 'geosite-cn: HTTP 404',
            'severity': ErrorSeverity.WARNING,
        },
        {
            'category': ErrorCategory.CONFIG_PERSISTENCE,
            'code': 'config_persistence_file_corrupted',
            'severity': ErrorSeverity.ERROR,
        },
    ]

    for case in test_cases:
        expected_severity = case.pop('severity')
        print(f"  Testing {case['code']}")

        error_info = error_handler.handle_error(**case)

        assert isinstance(error_info, ErrorInfo), "应该返回ErrorInfo对象"
        assert error_info.category == case['category'], "错误类别应该正确"
        assert error_info.code == case['code'], "错误代码应该正确"
        assert error_info.severity == expected_severity, f"{case['code']} 严重程度不正确"
        assert error_info.message and error_info.message != "未知错误", "预定义错误应该有默认消息"
        assert error_info.timestamp is not None, "应该总是有时间戳"

        user_message = error_info.to_user_message()
        assert error_info.severity.value.upper() in user_message, "用户消息应该包含严重程度"
        assert error_info.message in user_message, "用户消息应该包含错误消息"
        if error_info.details:
            assert error_info.details in user_message

    assert len(error_handler.get_error_history()) == len(test_cases)
    print("✅ 预定义错误代码测试通过")


def test_unknown_code_and_custom_message():
    error_handler = ErrorHandler()

    info = error_handler.handle_error(ErrorCategory.UNKNOWN, "something_new")
    assert info.severity == ErrorSeverity.ERROR
    assert info.message == "未知错误"
    assert info.suggestions == []

    info = error_handler.handle_error(ErrorCategory.RESOURCE, "resource_missing", message="缺少 sing-box")
    assert info.message == "缺少 sing-box", "自定义消息优先"
    assert info.suggestions, "仍然使用预定义的建议"


def test_exception_handling():
    """普通异常按类型名生成错误代码"""
    print("\nTesting exception handling...")

    error_handler = ErrorHandler()

    exceptions = [
        ValueError("Invalid value provided"),
        FileNotFoundError("sing-box not found"),
        PermissionError("Permission denied"),
        TimeoutError("Operation timed out"),
    ]

    for exception in exceptions:
        exception_type = type(exception).__name__
        error_info = error_handler.handle_exception(
            category=ErrorCategory.ENGINE_PROCESS,
            exception=exception,
            context={'test': True}
        )

        assert error_info.category == ErrorCategory.ENGINE_PROCESS
        assert error_info.code == f"engine_process_{exception_type.lower()}", "错误代码应该包含异常类型"
        assert exception_type in error_info.message, "错误消息应该包含异常类型"
        assert exception_type in error_info.details, "详细信息应该包含异常信息"
        assert error_info.context == {'test': True}

        print(f"    ✅ {exception_type} 处理成功")

    print("✅ 异常处理测试通过")


def test_core_exceptions_carry_codes():
    """核心异常使用自身的错误代码和消息"""
    print("\nTesting core exceptions...")

    error_handler = ErrorHandler()

    cases = [
        (LinkParseError("vless://bad", "端口无效"), "protocol_parsing_invalid_link"),
        (UnsupportedSchemeError("ss://abc", "ss"), "protocol_parsing_unsupported_scheme"),
        (MissingCredentialError("trojan://@h:443", "trojan"), "protocol_parsing_missing_credential"),
        (NoProfileSelectedError(), "config_compile_no_profile"),
        (StartupFailedError(1, "FATAL bind failed"), "engine_process_start_failed"),
    ]

    for exception, code in cases:
        info = error_handler.handle_exception(ErrorCategory.UNKNOWN, exception)
        assert info.code == code, f"{type(exception).__name__} 代码应该是 {code}"
        assert info.message == exception.message
        assert info.details == exception.details

    assert isinstance(UnsupportedSchemeError("ss://abc", "ss"), LinkParseError), "所有链接错误都是 LinkParseError"

    print("✅ 核心异常测试通过")


def test_history_filtering_and_limit():
    """历史记录过滤和容量限制"""
    print("\nTesting error history...")

    error_handler = ErrorHandler(max_history=5)

    for i in range(4):
        error_handler.handle_error(ErrorCategory.RESOURCE, "resource_download_failed", context={'i': i})
    for i in range(4):
        error_handler.handle_error(ErrorCategory.ENGINE_PROCESS, "engine_process_unexpected_exit",
                                   context={'i': i})

    history = error_handler.get_error_history()
    assert len(history) == 5, "历史记录应该被截断"
    assert history[0].category == ErrorCategory.RESOURCE and history[0].context == {'i': 3}

    engine_errors = error_handler.get_error_history(category=ErrorCategory.ENGINE_PROCESS)
    assert len(engine_errors) == 4
    assert len(error_handler.get_error_history(severity=ErrorSeverity.WARNING)) == 1
    assert [e.context['i'] for e in error_handler.get_error_history(limit=2)] == [2, 3]

    error_handler.clear_error_history()
    assert error_handler.get_error_history() == []

    print("✅ 历史记录测试通过")


def test_callbacks():
    """按类别通知回调，回调异常不影响处理"""
    print("\nTesting error callbacks...")

    error_handler = ErrorHandler()
    received = []

    def failing_callback(info):
        raise RuntimeError("callback failed")

    error_handler.register_error_callback(ErrorCategory.ENGINE_PROCESS, failing_callback)
    error_handler.register_error_callback(ErrorCategory.ENGINE_PROCESS, received.append)

    error_handler.handle_error(ErrorCategory.ENGINE_PROCESS, "engine_process_unexpected_exit")
    error_handler.handle_error(ErrorCategory.RESOURCE, "resource_missing")

    assert [info.code for info in received] == ["engine_process_unexpected_exit"]

    print("✅ 回调测试通过")



def test_engine_error_translation():
    """引擎错误翻译为用户提示"""
    print("🧪 测试引擎错误翻译...")

    cases = [
        ("listen tcp 127.0.0.1:1080: bind: address already in use", "端口已被占用"),
        ("configure tun interface: operation not permitted", "权限不足"),
        ("dial tcp 1.2.3.4:443: connect: connection refused", "连接被拒绝"),
        ("dial tcp 1.2.3.4:443: i/o timeout", "连接超时"),
        ("lookup h.example: no such host", "DNS 解析失败"),
        ("tls: failed to verify certificate: x509: certificate signed by unknown authority", "TLS 证书错误"),
        ("hysteria2: authentication failed, status code: 404", "认证失败"),
        ("decode config at config.json: json: unknown field \"foo\"", "配置错误"),
    ]
    for text, expected in cases:
        hint = translate_engine_error(text)
        assert hint and hint.startswith(expected), f"{text} -> {hint}"

    assert translate_engine_error("router: rule-set geosite-cn is broken") is None
    assert explain_engine_line("router: rule-set geosite-cn is broken") == "router: rule-set geosite-cn is broken"
    explained = explain_engine_line("connect: connection refused")
    assert explained.startswith("连接被拒绝") and explained.endswith("(connect: connection refused)"), "保留原始日志"

    print("✅ 引擎错误翻译测试通过")


def test_engine_exit_description():
    """退出码和最后一条日志组成启动失败消息"""
    message = describe_engine_exit(1, "FATAL[0000] start service: bind: address already in use")
    assert message.startswith("sing-box 启动失败 (退出码: 1): 端口已被占用")
    assert "start service" in message

    assert describe_engine_exit(1) == "sing-box 启动失败 (退出码: 1): 请检查配置文件和服务器设置"
    assert describe_engine_exit(126).endswith("没有执行权限")
    assert describe_engine_exit(127).endswith("找不到 sing-box 可执行文件")
    assert describe_engine_exit(3) == "sing-box 启动失败 (退出码: 3)"
    assert describe_engine_exit(3, "boom") == "sing-box 启动失败 (退出码: 3): boom"

    error = StartupFailedError(1, "boom", message=describe_engine_exit(1, "boom"))
    assert error.message == "sing-box 启动失败 (退出码: 1): boom"
    assert error.details == "boom"


if __name__ == "__main__":
    print("🧪 开始错误处理测试...")
    test_known_error_codes()
    test_unknown_code_and_custom_message()
    test_exception_handling()
    test_core_exceptions_carry_codes()
    test_history_filtering_and_limit()
    test_callbacks()
    test_engine_error_translation()
    test_engine_exit_description()
    print("\n🎉 所有错误处理测试通过！")
