"""Tests for .rv.json parsing and project naming."""

import pytest

from redpill_vault.errors import ConfigValidationError
from redpill_vault.manifest import (
    ProjectConfig,
    SecretEntry,
    build_key_specs,
    build_scoped_key,
    find_config,
    find_config_upward,
    get_project_name,
    load_config,
    normalize_project_name,
    parse_env_file,
    read_config,
    save_config,
    validate_config,
)


class TestValidateConfig:
    """Tests for manifest validation."""

    def test_accepts_valid_config(self):
        """Valid manifests parse into entries."""
        config = validate_config({
            "secrets": {
                "OPENAI_API_KEY": {"description": "OpenAI key"},
                "STRIPE": {"as": "STRIPE_KEY", "tag": "pay"},
            },
        })
        assert list(config.secrets) == ["OPENAI_API_KEY", "STRIPE"]
        assert config.secrets["STRIPE"].as_ == "STRIPE_KEY"
        assert config.secrets["STRIPE"].tag == "pay"

    def test_rejects_missing_secrets(self):
        """"secrets" is required."""
        with pytest.raises(ConfigValidationError, match="must have") as exc:
            validate_config({})
        assert exc.value.field == "secrets"

    def test_rejects_non_object(self):
        """The top level must be an object."""
        with pytest.raises(ConfigValidationError):
            validate_config(["secrets"])

    def test_rejects_non_object_secrets(self):
        """"secrets" must be an object."""
        with pytest.raises(ConfigValidationError, match="must be an object"):
            validate_config({"secrets": ["A"]})

    def test_rejects_non_object_entry(self):
        """Each entry must be an object."""
        with pytest.raises(ConfigValidationError, match="must be an object") as exc:
            validate_config({"secrets": {"KEY": "bad"}})
        assert exc.value.field == "KEY"

    @pytest.mark.parametrize("attr", ["description", "as", "tag"])
    def test_rejects_non_string_fields(self, attr):
        """description, as and tag must be strings."""
        with pytest.raises(ConfigValidationError, match=f"{attr} must be a string") as exc:
            validate_config({"secrets": {"K": {attr: 42}}})
        assert exc.value.field == f"K.{attr}"

    def test_accepts_empty_secrets(self):
        """An empty secrets object is valid."""
        assert validate_config({"secrets": {}}).secrets == {}

    def test_rejects_non_string_project(self):
        """"project" must be a string."""
        with pytest.raises(ConfigValidationError, match='"project" must be a string'):
            validate_config({"project": 123, "secrets": {}})

    @pytest.mark.parametrize("key", ["--no-mask", "-K", "MY-KEY", "1KEY", "A B", ""])
    def test_rejects_key_that_is_not_env_name(self, key):
        """Keys become environment variables, so anything else is refused."""
        with pytest.raises(ConfigValidationError, match="not a valid environment variable name") as exc:
            validate_config({"secrets": {key: {}}})
        assert exc.value.field == key

    @pytest.mark.parametrize("alias", ["--no-mask", "X=Y", "my.var"])
    def test_rejects_alias_that_is_not_env_name(self, alias):
        with pytest.raises(ConfigValidationError, match="not a valid environment variable name") as exc:
            validate_config({"secrets": {"K": {"as": alias}}})
        assert exc.value.field == "K.as"

    def test_invalid_json(self, tmp_path):
        """Unparseable JSON is a validation error."""
        path = tmp_path / ".rv.json"
        path.write_text("{")
        with pytest.raises(ConfigValidationError, match="not valid JSON"):
            read_config(path)

    def test_save_round_trip(self, tmp_path):
        """save_config writes "as" back under its JSON name."""
        path = tmp_path / ".rv.json"
        config = ProjectConfig(secrets={"A": SecretEntry(as_="B")}, project="p")
        save_config(path, config)
        assert '"as": "B"' in path.read_text()
        assert read_config(path) == config


class TestFindConfig:
    """find_config looks in one directory; find_config_upward walks parents."""

    def test_find_in_directory(self, make_project):
        """Manifest in the directory itself is found by both."""
        root = make_project(manifest={"secrets": {}})
        assert find_config(root) == root / ".rv.json"
        assert find_config_upward(root) == root / ".rv.json"

    def test_strict_lookup_does_not_walk(self, make_project):
        """From a subdirectory, find_config sees nothing."""
        root = make_project(manifest={"secrets": {}})
        sub = root / "src" / "deep"
        sub.mkdir(parents=True)
        assert find_config(sub) is None
        assert load_config(sub) is None

    def test_upward_lookup_walks(self, make_project):
        """From a subdirectory, find_config_upward finds the project root."""
        root = make_project(manifest={"secrets": {}})
        sub = root / "src" / "deep"
        sub.mkdir(parents=True)
        assert find_config_upward(sub) == root / ".rv.json"

    def test_nothing_found(self, tmp_path):
        """No manifest anywhere gives None."""
        assert find_config_upward(tmp_path) is None


class TestGetProjectName:
    """Tests for project naming."""

    def test_none_for_no_config(self):
        assert get_project_name(None, "/some/path") is None

    def test_explicit_project_wins(self):
        config = ProjectConfig(project="custom")
        assert get_project_name(config, "/home/user/myproject") == "custom"

    def test_derived_from_directory(self):
        assert get_project_name(ProjectConfig(), "/home/user/myproject") == "myproject"


class TestNormalizeProjectName:
    """Tests for project name normalization."""

    @pytest.mark.parametrize("name,expected", [
        ("myapp", "MYAPP"),
        ("my-app", "MY_APP"),
        ("my.app", "MY_APP"),
        ("my--app", "MY_APP"),
        ("-myapp-", "MYAPP"),
        ("My-Cool.App_v2", "MY_COOL_APP_V2"),
        ("__a__b__", "A_B"),
    ])
    def test_normalize(self, name, expected):
        assert normalize_project_name(name) == expected

    @pytest.mark.parametrize("name", ["my-app", "My App!!", "_x_", "ünï-cøde", "", "___"])
    def test_idempotent(self, name):
        """normalize(normalize(n)) == normalize(n)"""
        once = normalize_project_name(name)
        assert normalize_project_name(once) == once


class TestBuildScopedKey:
    """Tests for PROJECT__KEY names."""

    def test_format(self):
        assert build_scoped_key("myapp", "GITHUB_TOKEN") == "MYAPP__GITHUB_TOKEN"

    def test_complex_names(self):
        assert build_scoped_key("my.cool-app", "SECRET") == "MY_COOL_APP__SECRET"

    def test_equal_normalization_collides(self):
        """Names that normalize the same share scoped keys."""
        assert build_scoped_key("my-app", "K") == build_scoped_key("MY.APP", "K")


class TestBuildKeySpecs:
    """Tests for manifest to key spec conversion."""

    def test_keys_in_order(self):
        config = validate_config({"secrets": {"B": {}, "A": {}}})
        assert build_key_specs(config) == ["B", "A"]

    def test_rename_with_as(self):
        config = validate_config({"secrets": {"A": {"as": "X"}}})
        assert build_key_specs(config) == ["A=X"]


class TestParseEnvFile:
    """Tests for .env parsing."""

    def test_simple_pairs(self):
        assert parse_env_file("FOO=bar\nBAZ=qux") == {"FOO": "bar", "BAZ": "qux"}

    def test_strips_quotes(self):
        result = parse_env_file('A="my secret value"\nB=\'single\'')
        assert result == {"A": "my secret value", "B": "single"}

    def test_export_prefix(self):
        assert parse_env_file("export API_KEY=abc123") == {"API_KEY": "abc123"}

    def test_comments_and_blank_lines(self):
        assert parse_env_file("# comment\n\nKEY=val\n  # another") == {"KEY": "val"}

    def test_value_with_equals(self):
        result = parse_env_file("DATABASE_URL=postgres://u:p@host/db?opt=1")
        assert result["DATABASE_URL"] == "postgres://u:p@host/db?opt=1"

    def test_skips_lines_without_equals(self):
        assert parse_env_file("NOVALUE\nKEY=val") == {"KEY": "val"}

    def test_empty_value(self):
        assert parse_env_file("EMPTY=") == {"EMPTY": ""}
