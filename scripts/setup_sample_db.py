"""Utility that launches a sample PostgreSQL Docker container for sqlauth."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

from passlib.context import CryptContext

DEFAULT_CONTAINER = "sqlauth-sample-db"
DEFAULT_PORT = 5543
DEFAULT_PASSWORD = "sqlauth"
DEFAULT_DB = "sqlauth_demo"
DEFAULT_USER = "sqlauth"
DEFAULT_CONFIG = Path("sqlauth.toml")
DOCKER_IMAGE = "postgres:16-alpine"
SAMPLE_USERS = (
    ("anna@example.com", "anna-password", ("staff", "admin")),
    ("ben@example.com", "ben-password", ("staff",)),
    ("cara@student.example.com", "cara-password", ("students",)),
)


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"POSTGRES_PASSWORD={password}",
                "-e",
                f"POSTGRES_DB={database}",
                "-e",
                f"POSTGRES_USER={user}",
                "-p",
                f"{port}:5432",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, user)


def wait_for_start(name: str, user: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(["docker", "exec", name, "pg_isready", "-U", user], text=True)
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_sql() -> str:
    hasher = CryptContext(schemes=["bcrypt"])
    statements = [
        """
        CREATE TABLE IF NOT EXISTS users (
            uid SERIAL PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            passwordhash TEXT NOT NULL,
            created_at TIMESTAMPTZ DEFAULT now()
        );
        CREATE TABLE IF NOT EXISTS usergroups (
            uid INTEGER REFERENCES users(uid),
            groupname TEXT NOT NULL,
            PRIMARY KEY (uid, groupname)
        );
        """
    ]
    for email, password, groups in SAMPLE_USERS:
        statements.append(
            f"INSERT INTO users (email, passwordhash) VALUES ('{email}', '{hasher.hash(password)}') "
            "ON CONFLICT (email) DO NOTHING;"
        )
        for group in groups:
            statements.append(
                "INSERT INTO usergroups (uid, groupname) "
                f"SELECT uid, '{group}' FROM users WHERE email = '{email}' ON CONFLICT DO NOTHING;"
            )
    return "\n".join(statements)


def seed_data(name: str, database: str, user: str) -> None:
    run(
        ["docker", "exec", "-i", name, "psql", "-U", user, "-d", database, "-v", "ON_ERROR_STOP=1"],
        input=seed_sql(),
    )


def write_config(path: Path, port: int, user: str, database: str, password: str) -> None:
    if path.exists():
        print(f"{path} already exists; leaving as-is.")
        return
    path.write_text(
        f"""[sources.sample.databases.main]
dsn = "pgsql:host=localhost;port={port};dbname={database}"
username = "{user}"
password = "{password}"

[sources.sample.auth_queries.main]
database = "main"
query = "select uid, email, passwordhash from users where email = :username"
password_verify_hash_column = "passwordhash"
extract_userid_from = "uid"

[[sources.sample.attr_queries]]
database = "main"
query = "select groupname from usergroups where uid = :userid order by groupname"
"""
    )
    print(f"Wrote sample source 'sample' to {path}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="sqlauth TOML file to write")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
        seed_data(args.container, args.database, args.user)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    write_config(args.config, args.port, args.user, args.database, args.password)
    print(
        "Sample database is ready. Try: "
        f"python -m sqlauth {args.config} sample {SAMPLE_USERS[0][0]}  (password: {SAMPLE_USERS[0][1]})"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
