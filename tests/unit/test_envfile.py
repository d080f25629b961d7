"""Unit tests for .env parsing and generation."""

from pathlib import Path

from dh.services.envfile import EnvFile, build_env_file, find_env_template


TEMPLATE = """# Application settings
SITE_NAME=shop
SITE_HOSTNAME=shop.example.com
export SITE_PORT=8080
QUOTED="hello world"
SINGLE='a # not a comment'
INLINE=value # trailing comment
# DISABLED=yes
EMPTY=
"""


class TestEnvFileParsing:
    """Tests for reading values from .env text."""

    def test_plain_values(self):
        env = EnvFile.parse(TEMPLATE)
        assert env.get("SITE_NAME") == "shop"
        assert env.get("SITE_HOSTNAME") == "shop.example.com"

    def test_export_prefix(self):
        assert EnvFile.parse(TEMPLATE).get("SITE_PORT") == "8080"

    def test_quotes_removed(self):
        env = EnvFile.parse(TEMPLATE)
        assert env.get("QUOTED") == "hello world"
        assert env.get("SINGLE") == "a # not a comment"

    def test_inline_comment_stripped(self):
        assert EnvFile.parse(TEMPLATE).get("INLINE") == "value"

    def test_commented_assignment_ignored(self):
        assert EnvFile.parse(TEMPLATE).get("DISABLED") is None

    def test_empty_value_uses_default(self):
        env = EnvFile.parse(TEMPLATE)
        assert env.get("EMPTY") is None
        assert env.get("EMPTY", "fallback") == "fallback"

    def test_later_assignment_wins(self):
        env = EnvFile.parse("PORT=1\nPORT=2\n")
        assert env.get("PORT") == "2"

    def test_load(self, tmp_path: Path):
        path = tmp_path / ".env"
        path.write_text("A=1\n")
        assert EnvFile.load(path).values() == {"A": "1"}


class TestBuildEnvFile:
    """Tests for generating .env from a template."""

    def test_template_kept_verbatim(self):
        rendered = build_env_file(TEMPLATE, None, []).render()
        assert rendered == TEMPLATE

    def test_encryption_key_appended(self):
        env = build_env_file("SITE_NAME=shop\n", "s3cret", [])
        assert env.render() == "SITE_NAME=shop\n\n# Encryption key\nENCRYPTION_KEY=s3cret\n"
        assert env.get("ENCRYPTION_KEY") == "s3cret"

    def test_extra_variables_appended_after_key(self):
        env = build_env_file("SITE_NAME=shop\n", "k", [("DEBUG", "false"), ("WORKERS", "4")])
        lines = env.render().splitlines()
        assert lines.index("ENCRYPTION_KEY=k") < lines.index("DEBUG=false") < lines.index("WORKERS=4")
        assert "# Additional variables" in lines

    def test_extra_variable_overrides_template(self):
        env = build_env_file("DEBUG=true\n", None, [("DEBUG", "false")])
        assert env.get("DEBUG") == "false"

    def test_empty_template(self):
        env = build_env_file("", "k", [])
        assert env.render() == "# Encryption key\nENCRYPTION_KEY=k\n"


class TestFindEnvTemplate:
    """Tests for locating the repository's .env template."""

    def test_none(self, tmp_path: Path):
        assert find_env_template(tmp_path) is None

    def test_prefers_env_template(self, tmp_path: Path):
        (tmp_path / ".env_template").write_text("A=1\n")
        (tmp_path / ".env_template_prod").write_text("A=2\n")
        assert find_env_template(tmp_path) == tmp_path / ".env_template"

    def test_falls_back_to_prod_template(self, tmp_path: Path):
        (tmp_path / ".env_template_prod").write_text("A=2\n")
        assert find_env_template(tmp_path) == tmp_path / ".env_template_prod"
