import dns.message

from sdns.middleware.accesslist import AccessList
from sdns.middleware.chain import Chain, Handler, ResponseWriter


class Recorder(Handler):
    name = "recorder"

    def __init__(self):
        self.calls = 0

    def serve_dns(self, ctx, ch):
        self.calls += 1


def run(acl, remote):
    rec = Recorder()
    ch = Chain([acl, rec])
    ch.reset(ResponseWriter("udp", remote), dns.message.make_query("example.com.", "A"))
    ch.next({})
    return rec.calls


def test_defaults_allow_everyone():
    acl = AccessList([])
    assert len(acl.networks) == 2
    assert run(acl, "8.8.8.8:0") == 1
    assert run(acl, "[2001:db8::1]:53") == 1


def test_restricted_list():
    acl = AccessList(["127.0.0.1/32", "1"])
    assert acl.name == "accesslist"
    assert len(acl.networks) == 1
    assert run(acl, "127.0.0.255:0") == 1  # internal queries pass
    assert run(acl, "0.0.0.0:0") == 0
    assert run(acl, "127.0.0.1:0") == 1


def test_allowed_accepts_text():
    acl = AccessList(["10.0.0.0/8"])
    assert acl.allowed("10.1.2.3") is True
    assert acl.allowed("11.1.2.3") is False
    assert acl.allowed("not-an-ip") is False
    assert acl.allowed("::1") is False


def test_unknown_remote_is_blocked():
    acl = AccessList([])
    assert run(acl, "") == 0