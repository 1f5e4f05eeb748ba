import pytest

from docfill.errors import InvalidPathError
from docfill.services.paths import ROOT, Path, decode, encode, join


def test_decode_converts_canonical_integers_only():
    assert decode("items.0.price") == ("items", 0, "price")
    assert decode("codes.007") == ("codes", "007")
    assert decode("a.-1") == ("a", "-1")


def test_bracket_notation_is_accepted():
    assert decode("items[2].name") == ("items", 2, "name")


@pytest.mark.parametrize("text", ["", "  ", "a..b", ".a", "a."])
def test_invalid_paths_raise(text):
    with pytest.raises(InvalidPathError):
        decode(text)


def test_encode_rejects_bad_segments():
    with pytest.raises(InvalidPathError):
        encode(["a", -1])
    with pytest.raises(InvalidPathError):
        encode(["a.b"])
    with pytest.raises(InvalidPathError):
        encode([True])


def test_round_trip_and_equality():
    path = Path.parse("order.items.3.sku")
    assert Path.parse(str(path)) == path
    assert Path(("order", "items", "3", "sku")) == path
    assert hash(Path(("a", 1))) == hash(Path.parse("a.1"))


def test_join_and_parent():
    assert str(join("user", "profile")) == "user.profile"
    assert str(join(None, "name")) == "name"
    assert str(Path.parse("a.b").join("c.0")) == "a.b.c.0"
    assert Path.parse("a.b.c").parent == Path.parse("a.b")
    assert ROOT.is_root()
    assert Path.parse("a.b.c").startswith(Path.parse("a.b"))
    assert not Path.parse("a.bc").startswith(Path.parse("a.b"))
