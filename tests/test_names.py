from esmport.names import (
    archive_dir,
    from_node_name,
    is_test_name,
    package_dir,
    split_constraint,
    strip_test_suffix,
    to_node_name,
)


def test_bare_names_use_default_scope():
    assert to_node_name("tracker") == "@meteor/tracker"
    assert from_node_name("@meteor/tracker") == "tracker"


def test_author_names_use_author_scope():
    assert to_node_name("iron:router") == "@iron/router"
    assert from_node_name("@iron/router") == "iron:router"
    assert package_dir("iron:router") == "@iron/router"
    assert package_dir("tracker") == "tracker"
    assert archive_dir("iron:router") == "iron_router"


def test_split_constraint():
    assert split_constraint("ddp@1.2.0") == ("ddp", "1.2.0")
    assert split_constraint("ddp") == ("ddp", None)
    assert split_constraint("me:pkg@=2.0.0") == ("me:pkg", "=2.0.0")


def test_test_suffix():
    assert is_test_name("alpha--test--")
    assert not is_test_name("alpha")
    assert strip_test_suffix("alpha--test--") == "alpha"
    assert strip_test_suffix("alpha") == "alpha"
