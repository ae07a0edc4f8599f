import pytest

from rlmloop.path_utils import resolve_workspace_path, workspace_dirname


def test_resolves_nested_and_absolute_inside(tmp_path):
    assert resolve_workspace_path(tmp_path, " sub/a.txt ") == (tmp_path / "sub" / "a.txt").resolve()
    inside = str(tmp_path / "b.txt")
    assert resolve_workspace_path(tmp_path, inside) == (tmp_path / "b.txt").resolve()


@pytest.mark.parametrize("name", ["../x.txt", "/etc/passwd", "sub/../../x"])
def test_rejects_escaping_paths(tmp_path, name):
    with pytest.raises(ValueError, match="escapes workspace"):
        resolve_workspace_path(tmp_path, name)


def test_rejects_blank(tmp_path):
    with pytest.raises(ValueError):
        resolve_workspace_path(tmp_path, "  ")


def test_workspace_dirname_sanitizes():
    assert workspace_dirname("a/b c") == "rlm_env_a_b_c"
    assert workspace_dirname("x" * 100) == "rlm_env_" + "x" * 64
