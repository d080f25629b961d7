"""Reading and generating site .env files."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# Repository-provided templates, in order of preference
ENV_TEMPLATE_CANDIDATES = (".env_template", ".env_template_prod")

_ASSIGNMENT = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _unquote(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    # Unquoted values may carry an inline comment
    return re.split(r"\s+#", value, maxsplit=1)[0].strip()


@dataclass
class EnvFile:
    """Ordered lines of a .env file with key lookup.

    Later assignments win, matching how docker compose reads the file.
    """
    lines: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "EnvFile":
        return cls(lines=text.splitlines())

    @classmethod
    def load(cls, path: Path) -> "EnvFile":
        return cls.parse(path.read_text())

    def values(self) -> dict[str, str]:
        result = {}
        for line in self.lines:
            if line.lstrip().startswith("#"):
                continue
            match = _ASSIGNMENT.match(line)
            if match:
                result[match.group(1)] = _unquote(match.group(2))
        return result

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.values().get(key)
        return value if value else default

    def append_section(self, title: str, assignments: list[tuple[str, str]]) -> None:
        if self.lines and self.lines[-1].strip():
            self.lines.append("")
        self.lines.append(f"# {title}")
        for key, value in assignments:
            self.lines.append(f"{key}={value}")

    def render(self) -> str:
        return "\n".join(self.lines) + "\n" if self.lines else ""


def find_env_template(deploy_dir: Path) -> Optional[Path]:
    for name in ENV_TEMPLATE_CANDIDATES:
        candidate = deploy_dir / name
        if candidate.is_file():
            return candidate
    return None


def build_env_file(
    base_text: str,
    encryption_key: Optional[str],
    extra: list[tuple[str, str]],
) -> EnvFile:
    """Start from a template and append the encryption key and extra variables."""
    env = EnvFile.parse(base_text)
    if encryption_key:
        env.append_section("Encryption key", [("ENCRYPTION_KEY", encryption_key)])
    if extra:
        env.append_section("Additional variables", extra)
    return env

