from sdns.tree import Tree


def test_static_route():
    tree = Tree()
    tree.add("/metrics", "metrics")
    assert tree.lookup("/metrics") == ("metrics", [])


def test_static_route_missing():
    tree = Tree()
    tree.add("/metrics", "metrics")
    data, params = tree.lookup("/other")
    assert data is None
    assert params == []


def test_static_route_overwrite():
    tree = Tree()
    tree.add("/files", "first")
    tree.add("/files", "second")
    assert tree.lookup("/files")[0] == "second"


def test_single_parameter():
    tree = Tree()
    tree.add("/user/:id", "user")
    assert tree.lookup("/user/42") == ("user", [("id", "42")])


def test_parameter_trailing_slash_returns_same_data():
    tree = Tree()
    tree.add("/user/:id", "user")
    data, params = tree.lookup("/user/42/")
    assert data == "user"
    assert params == [("id", "42")]


def test_two_parameters():
    tree = Tree()
    tree.add("/api/v1/purge/:qname/:qtype", "purge")
    data, params = tree.lookup("/api/v1/purge/test.com/A")
    assert data == "purge"
    assert dict(params) == {"qname": "test.com", "qtype": "A"}
    assert [key for key, _ in params] == ["qname", "qtype"]


def test_parameter_followed_by_static_segment():
    tree = Tree()
    tree.add("/user/:id/posts", "posts")
    assert tree.lookup("/user/5/posts") == ("posts", [("id", "5")])


def test_sibling_groups_with_shared_prefix():
    tree = Tree()
    routes = {
        "/api/v1/block/exists/:key": "exists",
        "/api/v1/block/get/:key": "get",
        "/api/v1/block/remove/:key": "remove",
        "/api/v1/block/set/:key": "set",
    }
    for path, data in routes.items():
        tree.add(path, data)
    for path, data in routes.items():
        request = path.replace(":key", "test.com")
        assert tree.lookup(request) == (data, [("key", "test.com")])


def test_conflicting_prefixes_split():
    tree = Tree()
    tree.add("/blog/:id", "blog")
    tree.add("/bag/:id", "bag")
    assert tree.lookup("/blog/8") == ("blog", [("id", "8")])
    assert tree.lookup("/bag/7") == ("bag", [("id", "7")])


def test_readding_parameter_route_replaces_data():
    tree = Tree()
    tree.add("/user/:id", "old")
    tree.add("/user/:id", "new")
    assert tree.lookup("/user/1") == ("new", [("id", "1")])


def test_wildcard():
    tree = Tree()
    tree.add("/files", "list")
    tree.add("/files/*file", "file")
    assert tree.lookup("/files") == ("list", [])
    assert tree.lookup("/files/file.tar.gz") == ("file", [("file", "file.tar.gz")])


def test_wildcard_captures_nested_path():
    tree = Tree()
    tree.add("/static/*path", "static")
    assert tree.lookup("/static/a/b.css") == ("static", [("path", "a/b.css")])


def test_dynamic_miss():
    tree = Tree()
    tree.add("/user/:id", "user")
    data, params = tree.lookup("/notfound")
    assert data is None
    assert params == []


def test_extra_segment_after_parameter_misses():
    tree = Tree()
    tree.add("/user/:id", "user")
    data, _ = tree.lookup("/user/1/extra")
    assert data is None