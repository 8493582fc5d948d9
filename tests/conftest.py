"""
测试公共夹具

所有数据库测试都通过真实的 DBManager 在 SQLite 内存库上运行。
"""
import os
import tempfile

# 使用隔离的配置目录，避免读取本机用户配置
os.environ.setdefault("GRIDKIT_CONFIG_DIR", tempfile.mkdtemp(prefix="gridkit-test-"))

import pytest

from gridkit.common.db_manager import create_sqlite_manager


@pytest.fixture
def db():
    manager = create_sqlite_manager()
    yield manager
    manager.close()


@pytest.fixture
def people_db(db):
    """t(id, name, active)，两行：(1, Alice, 1)、(2, Bob, 0)"""
    db.query(
        "CREATE TABLE t ("
        "id INTEGER PRIMARY KEY, "
        "name TEXT NOT NULL, "
        "active INTEGER NOT NULL DEFAULT 1)"
    ).execute()
    db.insert_batch("t", ["id", "name", "active"], [(1, "Alice", 1), (2, "Bob", 0)])
    return db


@pytest.fixture
def contacts_db(db):
    """contacts(id, name, email, score, born, avatar)"""
    db.query(
        "CREATE TABLE contacts ("
        "id INTEGER PRIMARY KEY, "
        "name VARCHAR(100) NOT NULL, "
        "email VARCHAR(255), "
        "score DECIMAL(10,2), "
        "born DATE, "
        "avatar VARCHAR(255))"
    ).execute()
    db.insert_batch(
        "contacts",
        ["id", "name", "email", "score", "born"],
        [
            (1, "alpha", "alpha@example.com", 10, "1990-01-01"),
            (2, "beta", "findme@example.org", 20, "1991-02-02"),
        ],
    )
    return db
