#!/usr/bin/env python3
"""
sing-box 配置生成测试
"""
import os
import shutil
import tempfile

from singbox_gui.core.config_generator import (
    ConfigGenerator,
    compile_config,
    dump_config,
    load_config,
)
from singbox_gui.core.exceptions import ConfigInvalidError, NoProfileSelectedError
from singbox_gui.core.profile import (
    GrpcSettings, HttpSettings, Hysteria2Settings, Network, Protocol,
    RealitySettings, Security, ServerProfile, TlsSettings, WsSettings,
)
from singbox_gui.core.user_config import (
    DomainRule, ModeType, ProxyMode, RuleAction, TunSettings, UserConfig,
)

TEST_UUID = "11111111-1111-1111-1111-111111111111"


def _vless(**kwargs) -> ServerProfile:
    return ServerProfile(
        name="test",
        protocol=Protocol.VLESS,
        address="h.example",
        port=443,
        uuid=TEST_UUID,
        **kwargs
    )


def _config(server: ServerProfile, **kwargs) -> UserConfig:
    return UserConfig(servers=[server], selected_server_id=server.id, **kwargs)


def _expect_invalid(config: UserConfig, mode_type: ModeType = ModeType.LOCAL_PROXY):
    try:
        compile_config(config, mode_type)
    except ConfigInvalidError:
        return
    assert False, "应该抛出 ConfigInvalidError"


def test_local_proxy_global_mode():
    """全局模式 + 本地代理：2 个入站、3 个出站、final 为 proxy"""
    print("Testing local proxy document...")

    config = _config(_vless(), proxy_mode=ProxyMode.GLOBAL, socks_port=1080, http_port=1081)
    document = compile_config(config, ModeType.LOCAL_PROXY)

    assert list(document.keys()) == ["log", "inbounds", "outbounds", "route"]

    inbounds = document["inbounds"]
    assert len(inbounds) == 2
    assert inbounds[0] == {"type": "http", "tag": "http-in", "listen": "127.0.0.1", "listen_port": 1081}
    assert inbounds[1] == {"type": "socks", "tag": "socks-in", "listen": "127.0.0.1", "listen_port": 1080}

    outbounds = document["outbounds"]
    assert [o["tag"] for o in outbounds] == ["proxy", "direct", "block"]
    assert outbounds[0] == {
        "type": "vless",
        "tag": "proxy",
        "server": "h.example",
        "server_port": 443,
        "uuid": TEST_UUID,
        "packet_encoding": "xudp",
    }

    route = document["route"]
    assert route["final"] == "proxy"
    assert route["rules"] == []
    assert "rule_set" not in route

    print("  ✓ 本地代理配置正确")


def test_no_profile_selected():
    """没有选择服务器或选中的服务器已删除"""
    print("Testing missing profile...")

    for config in (UserConfig(), UserConfig(servers=[_vless()], selected_server_id="missing")):
        try:
            compile_config(config, ModeType.LOCAL_PROXY)
            assert False, "应该抛出 NoProfileSelectedError"
        except NoProfileSelectedError as e:
            assert e.code == "config_compile_no_profile"

    print("  ✓ 未选择服务器时报错")


def test_direct_and_smart_modes():
    """直连模式 final 为 direct，智能模式引用规则集"""
    print("Testing proxy modes...")

    direct = compile_config(_config(_vless(), proxy_mode=ProxyMode.DIRECT), ModeType.LOCAL_PROXY)
    assert direct["route"]["final"] == "direct"
    assert direct["route"]["rules"][-1] == {"network": ["tcp", "udp"], "action": "route", "outbound": "direct"}

    paths = {"geosite-cn": "/data/geosite-cn.srs", "geoip-cn": "/data/geoip-cn.srs"}
    smart = compile_config(
        _config(_vless(), proxy_mode=ProxyMode.SMART,
                custom_rules=[DomainRule("x.com", RuleAction.BLOCK)]),
        ModeType.LOCAL_PROXY,
        paths,
    )
    route = smart["route"]
    assert route["final"] == "proxy"
    assert route["rules"][0]["outbound"] == "block", "自定义规则应该在最前"
    assert route["rule_set"] == [
        {"tag": "geosite-cn", "type": "local", "format": "binary", "path": "/data/geosite-cn.srs"},
        {"tag": "geoip-cn", "type": "local", "format": "binary", "path": "/data/geoip-cn.srs"},
    ]

    print("  ✓ 代理模式正确")


def test_transparent_mode():
    """透明代理：TUN 入站、DNS、嗅探和 DNS 劫持"""
    print("Testing transparent mode...")

    config = _config(
        _vless(),
        proxy_mode=ProxyMode.SMART,
        tun_config=TunSettings(mtu=9000, stack="gvisor", interface_name="singbox-tun"),
    )
    document = compile_config(config, ModeType.TRANSPARENT)

    assert list(document.keys()) == ["log", "dns", "inbounds", "outbounds", "route"]
    assert document["inbounds"] == [{
        "type": "tun",
        "tag": "tun-in",
        "interface_name": "singbox-tun",
        "address": ["172.19.0.1/30"],
        "mtu": 9000,
        "auto_route": True,
        "strict_route": True,
        "stack": "gvisor",
    }]

    dns = document["dns"]
    assert [s["tag"] for s in dns["servers"]] == ["dns-remote", "dns-local"]
    assert dns["servers"][0]["detour"] == "proxy"
    assert dns["rules"][0] == {"domain": ["h.example"], "server": "dns-local"}
    assert dns["rules"][1] == {"rule_set": "geosite-cn", "server": "dns-local"}
    assert dns["final"] == "dns-remote"

    route = document["route"]
    assert route["rules"][0] == {"action": "sniff"}
    assert route["rules"][1] == {"protocol": "dns", "action": "hijack-dns"}
    assert route["auto_detect_interface"] is True
    assert document["outbounds"][0]["domain_resolver"] == "dns-local"

    # 全局模式下只有 DNS 规则引用 geosite-cn
    global_doc = compile_config(_config(_vless(), proxy_mode=ProxyMode.GLOBAL), ModeType.TRANSPARENT)
    assert [r["tag"] for r in global_doc["route"]["rule_set"]] == ["geosite-cn"]

    # IP 地址的服务器不需要本地解析规则
    ip_server = _vless()
    ip_server.address = "1.2.3.4"
    direct_doc = compile_config(_config(ip_server, proxy_mode=ProxyMode.DIRECT), ModeType.TRANSPARENT)
    assert direct_doc["dns"]["rules"] == []
    assert direct_doc["dns"]["final"] == "dns-local"
    assert "rule_set" not in direct_doc["route"]

    print("  ✓ 透明代理配置正确")


def test_mode_type_defaults_to_user_config():
    config = _config(_vless(), mode_type=ModeType.TRANSPARENT)
    assert compile_config(config)["inbounds"][0]["type"] == "tun"


def test_tls_and_transport():
    """TLS、Reality 和各传输层子配置"""
    print("Testing TLS and transport...")

    ws_server = _vless(
        network=Network.WS,
        ws=WsSettings(path="/p", headers={"Host": "cdn.example"}, max_early_data=2048,
                      early_data_header_name="Sec-WebSocket-Protocol"),
        security=Security.TLS,
        tls=TlsSettings(alpn=["h2", "http/1.1"], fingerprint="firefox"),
    )
    outbound = compile_config(_config(ws_server), ModeType.LOCAL_PROXY)["outbounds"][0]
    assert outbound["tls"] == {
        "enabled": True,
        "server_name": "h.example",
        "insecure": False,
        "alpn": ["h2", "http/1.1"],
        "utls": {"enabled": True, "fingerprint": "firefox"},
    }, "server_name 应该回退到服务器地址"
    assert outbound["transport"] == {
        "type": "ws",
        "path": "/p",
        "headers": {"Host": "cdn.example"},
        "max_early_data": 2048,
        "early_data_header_name": "Sec-WebSocket-Protocol",
    }

    reality_server = _vless(
        flow="xtls-rprx-vision",
        security=Security.REALITY,
        tls=TlsSettings(server_name="www.microsoft.com"),
        reality=RealitySettings(public_key="pbk", short_id="6ba8"),
    )
    outbound = compile_config(_config(reality_server), ModeType.LOCAL_PROXY)["outbounds"][0]
    assert outbound["flow"] == "xtls-rprx-vision"
    assert outbound["tls"]["utls"] == {"enabled": True, "fingerprint": "chrome"}
    assert outbound["tls"]["reality"] == {"enabled": True, "public_key": "pbk", "short_id": "6ba8"}
    assert "transport" not in outbound

    trojan = ServerProfile(
        name="trojan", protocol=Protocol.TROJAN, address="t.example", port=443, password="secret",
        network=Network.GRPC, grpc=GrpcSettings(service_name="svc", multi_mode=True),
        security=Security.TLS,
    )
    outbound = compile_config(_config(trojan), ModeType.LOCAL_PROXY)["outbounds"][0]
    assert outbound["type"] == "trojan"
    assert outbound["password"] == "secret"
    assert "uuid" not in outbound
    assert outbound["transport"] == {"type": "grpc", "service_name": "svc"}

    http_trojan = ServerProfile(
        name="h2", protocol=Protocol.TROJAN, address="t.example", port=443, password="secret",
        network=Network.HTTP, http=HttpSettings(host=["a.example", "b.example"], path="/h2", method="PUT"),
    )
    outbound = compile_config(_config(http_trojan), ModeType.LOCAL_PROXY)["outbounds"][0]
    assert "tls" not in outbound, "security=none 时不应有 tls"
    assert outbound["transport"] == {"type": "http", "host": ["a.example", "b.example"],
                                     "path": "/h2", "method": "PUT"}

    hy2 = ServerProfile(
        name="hy2", protocol=Protocol.HYSTERIA2, address="hy.example", port=8443, password="pw",
        hysteria2=Hysteria2Settings(up_mbps=50, down_mbps=200, obfs_type="salamander", obfs_password="ob"),
    )
    outbound = compile_config(_config(hy2), ModeType.LOCAL_PROXY)["outbounds"][0]
    assert outbound["type"] == "hysteria2"
    assert outbound["up_mbps"] == 50
    assert outbound["down_mbps"] == 200
    assert outbound["obfs"] == {"type": "salamander", "password": "ob"}
    assert outbound["tls"]["enabled"] is True, "Hysteria2 固定使用 TLS"

    print("  ✓ TLS 和传输层正确")


def test_invalid_configs():
    """格式错误的字段报 ConfigInvalidError"""
    print("Testing invalid configs...")

    _expect_invalid(_config(_vless(network=Network.WS, ws=WsSettings(path="no-slash"))))
    _expect_invalid(_config(_vless(network=Network.WS, ws=WsSettings(path="/", max_early_data=-1))))
    _expect_invalid(_config(_vless(network=Network.GRPC, grpc=GrpcSettings(service_name="a b"))))
    _expect_invalid(_config(_vless(network=Network.HTTP, http=HttpSettings(host=[" "]))))
    _expect_invalid(_config(_vless(network=Network.HTTP, http=HttpSettings(method="get"))))
    _expect_invalid(_config(_vless(security=Security.REALITY)))

    no_uuid = _vless()
    no_uuid.uuid = ""
    _expect_invalid(_config(no_uuid))

    hy2_ws = ServerProfile(name="hy2", protocol=Protocol.HYSTERIA2, address="h", port=443,
                           password="pw", network=Network.WS)
    _expect_invalid(_config(hy2_ws))

    _expect_invalid(_config(_vless(), socks_port=1080, http_port=1080))
    _expect_invalid(_config(_vless(), tun_config=TunSettings(mtu=100)), ModeType.TRANSPARENT)
    _expect_invalid(_config(_vless(), tun_config=TunSettings(stack="lwip")), ModeType.TRANSPARENT)
    _expect_invalid(_config(_vless(), custom_rules=[DomainRule(" ", RuleAction.DIRECT)]))
    _expect_invalid(_config(_vless(), custom_rules=[DomainRule("*.", RuleAction.BLOCK)]))

    print("  ✓ 无效配置被拒绝")


def test_output_is_deterministic():
    """相同输入序列化结果完全相同"""
    print("Testing deterministic output...")

    server = _vless(network=Network.WS, ws=WsSettings(path="/ws"), security=Security.TLS)
    config = _config(server, proxy_mode=ProxyMode.SMART,
                     custom_rules=[DomainRule("*.google.com", RuleAction.PROXY)])

    for mode_type in ModeType:
        first = dump_config(compile_config(config, mode_type))
        assert dump_config(compile_config(config, mode_type)) == first

    print("  ✓ 输出稳定")


def test_save_and_load():
    """ConfigGenerator 生成并保存配置"""
    temp_dir = tempfile.mkdtemp()
    try:
        path = os.path.join(temp_dir, "config", "sing-box.json")
        generator = ConfigGenerator({"geosite-cn": "geosite-cn.srs", "geoip-cn": "geoip-cn.srs"})
        document = generator.generate_and_save(_config(_vless()), path)
        assert load_config(path) == document, "不存在的目录应该被创建"
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


if __name__ == "__main__":
    print("🧪 开始配置生成测试...")
    test_local_proxy_global_mode()
    test_no_profile_selected()
    test_direct_and_smart_modes()
    test_transparent_mode()
    test_mode_type_defaults_to_user_config()
    test_tls_and_transport()
    test_invalid_configs()
    test_output_is_deterministic()
    test_save_and_load()
    print("🎉 所有配置生成测试通过！")
