"""
Statement Guard - screens author-submitted SQL before it reaches the database
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dynapi.core.errors import DefinitionError


@dataclass
class GuardResult:
    """Outcome of screening a statement."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class StatementGuard:
    """Validate and classify author SQL."""

    # Blocked patterns: system catalogs, files, extensions, roles, cluster-level commands
    BLOCKED_PATTERNS: List[Tuple[str, str]] = [
        (r"\b(from|join|into|update|delete\s+from)\s+[\"`]?(pg_\w+|pg_catalog\.|information_schema\.)",
         "Access to system catalogs (pg_*, pg_catalog, information_schema) is not allowed"),
        (r"\b(from|join|into|update|delete\s+from|insert\s+into)\s+[\"`]?(public[\"`]?\.[\"`]?)?sys\w+",
         "Direct access to system tables (sys*) is not allowed"),
        (r"\b(pg_read_file|pg_read_binary_file|pg_ls_dir|pg_stat_file|lo_import|lo_export)\s*\(",
         "File access functions are not allowed"),
        (r"\bcopy\s+[\w.\"]+\s+(from|to)\b",
         "COPY commands are not allowed"),
        (r"\b(create|drop|alter)\s+extension\b",
         "Extension management operations are not allowed"),
        (r"\b(create|drop|alter)\s+(role|user)\b",
         "Role and user management operations are not allowed"),
        (r"\b(set|reset)\s+role\b",
         "Role and user management operations are not allowed"),
        (r"\bgrant\b.*\bto\b",
         "Role and user management operations are not allowed"),
        (r"\brevoke\b.*\bfrom\b",
         "Role and user management operations are not allowed"),
        (r"\balter\s+system\b",
         "ALTER SYSTEM is not allowed"),
        (r"\b(create|drop)\s+database\b",
         "Database management operations are not allowed"),
        (r"\bdrop\s+schema\s+(pg_\w+|information_schema|public)\b",
         "Dropping a critical schema is not allowed"),
    ]

    WARNING_PATTERNS: List[Tuple[str, str]] = [
        (r"\bdrop\s+(table|index|view|sequence|function|procedure|trigger)\b",
         "DROP command detected - use with caution"),
        (r"\btruncate\s+(table\s+)?\w",
         "TRUNCATE command detected - this will delete all data"),
        (r"\balter\s+(table|index|view|sequence|function|procedure)\b",
         "ALTER command detected - schema changes can affect application"),
    ]

    FUNCTION_PATTERNS: List[Tuple[str, str]] = [
        (r"\blanguage\s+[\"']?(plpythonu|plpython3u|plperlu|c)[\"']?(\s|;|$)",
         "Functions using plpythonu, plperlu, or C language are not allowed"),
        (r"\b(create|drop|alter)\s+schema\b",
         "Schema manipulation commands are not allowed in functions"),
        (r"\b(pg_terminate_backend|pg_cancel_backend|pg_reload_conf)\s*\(",
         "Administrative functions are not allowed"),
    ]

    FUNCTION_HEADER_RE = re.compile(
        r"^\s*create\s+(or\s+replace\s+)?function\s+"
        r"((?:\"[^\"]+\"|[A-Za-z_][\w$]*)(?:\s*\.\s*(?:\"[^\"]+\"|[A-Za-z_][\w$]*))?)\s*\(",
        re.IGNORECASE,
    )

    REPLACE_RE = re.compile(r"\bcreate\s+or\s+replace\b", re.IGNORECASE)

    SYSTEM_SCHEMA_RE = re.compile(r"^(pg_.*|information_schema)$", re.IGNORECASE)

    @classmethod
    def normalize(cls, sql: str) -> str:
        """Strip comments and collapse whitespace."""
        normalized = re.sub(r"--[^\n]*", " ", sql)
        normalized = re.sub(r"/\*.*?\*/", " ", normalized, flags=re.DOTALL)
        return re.sub(r"\s+", " ", normalized).strip()

    @classmethod
    def _apply(cls, patterns: List[Tuple[str, str]], sql: str, sink: List[str]) -> None:
        for pattern, message in patterns:
            if re.search(pattern, sql, re.IGNORECASE) and message not in sink:
                sink.append(message)

    @classmethod
    def check(cls, sql: str) -> GuardResult:
        """Screen a general statement (endpoint SQL, table/view DDL)."""
        result = GuardResult()
        if not sql or not sql.strip():
            result.errors.append("SQL query cannot be empty")
            return result

        normalized = cls.normalize(sql)
        cls._apply(cls.BLOCKED_PATTERNS, normalized, result.errors)
        cls._apply(cls.WARNING_PATTERNS, normalized, result.warnings)
        return result

    @classmethod
    def check_function(cls, sql: str) -> GuardResult:
        """Screen a CREATE [OR REPLACE] FUNCTION statement."""
        result = cls.check(sql)
        if not sql or not sql.strip():
            return result

        normalized = cls.normalize(sql)
        if not cls.FUNCTION_HEADER_RE.match(normalized):
            result.errors.append("Only CREATE FUNCTION or CREATE OR REPLACE FUNCTION statements are allowed")
        cls._apply(cls.FUNCTION_PATTERNS, normalized, result.errors)
        return result

    @classmethod
    def ensure_valid(cls, result: GuardResult) -> GuardResult:
        if not result.is_valid:
            raise DefinitionError(f"Invalid SQL: {'; '.join(result.errors)}", {"errors": result.errors})
        return result

    @classmethod
    def is_replace(cls, sql: str) -> bool:
        """True if the statement contains a CREATE OR REPLACE clause."""
        return bool(cls.REPLACE_RE.search(cls.normalize(sql)))

    @classmethod
    def parse_function_name(cls, sql: str) -> Tuple[str, str]:
        """
        Extract (schema, name) from a CREATE FUNCTION header.

        Unquoted identifiers fold to lower case the way Postgres stores them;
        the schema defaults to ``public``.
        """
        match = cls.FUNCTION_HEADER_RE.match(cls.normalize(sql))
        if not match:
            raise DefinitionError("Unable to parse function name from SQL statement")

        parts = [p.strip() for p in _split_qualified(match.group(2))]
        parts = [p[1:-1] if p.startswith('"') else p.lower() for p in parts]
        schema, name = (parts[0], parts[1]) if len(parts) == 2 else ("public", parts[0])

        if cls.is_system_schema(schema):
            raise DefinitionError("Functions cannot be created in system schemas")
        if re.match(r"^(pg_|sys)", name, re.IGNORECASE):
            raise DefinitionError('Function names starting with "pg_" or "sys" are reserved for system use')
        return schema, name

    @classmethod
    def is_system_schema(cls, schema: Optional[str]) -> bool:
        return bool(schema and cls.SYSTEM_SCHEMA_RE.match(schema))


def _split_qualified(identifier: str) -> List[str]:
    """Split ``schema.name`` without breaking on dots inside double quotes."""
    parts, current, quoted = [], [], False
    for ch in identifier:
        if ch == '"':
            quoted = not quoted
        if ch == "." and not quoted:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return parts
