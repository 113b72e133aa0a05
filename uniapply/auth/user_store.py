"""
用户记录存储
定义账户存储接口，并提供MongoDB和内存两种实现
"""

import copy
from typing import Dict, Iterable, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from .exceptions import AccountExistsError
from .models import Account, normalize_email, utcnow


class UserStore(Protocol):
    """账户存储接口"""

    async def create(self, account: Account) -> Account: ...

    async def find_by_id(self, account_id: str) -> Optional[Account]: ...

    async def find_by_email(self, email: str) -> Optional[Account]: ...

    async def save(self, account: Account) -> None: ...


class InMemoryUserStore:
    """内存账户存储，用于测试和本地开发"""

    def __init__(self, accounts: Iterable[Account] = ()):
        self._accounts: Dict[str, Account] = {}
        for account in accounts:
            self._accounts[account.id] = copy.deepcopy(account)

    async def create(self, account: Account) -> Account:
        if await self.find_by_email(account.email):
            raise AccountExistsError()
        self._accounts[account.id] = copy.deepcopy(account)
        return account

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        # 返回副本，调用方修改后必须save才会生效
        return copy.deepcopy(account) if account else None

    async def find_by_email(self, email: str) -> Optional[Account]:
        email = normalize_email(email)
        for account in self._accounts.values():
            if account.email == email:
                return copy.deepcopy(account)
        return None

    async def save(self, account: Account) -> None:
        account.updated_at = utcnow()
        self._accounts[account.id] = copy.deepcopy(account)

    def __len__(self) -> int:
        return len(self._accounts)


class MongoUserStore:
    """MongoDB账户存储"""

    def __init__(self, database: AsyncIOMotorDatabase, collection_name: str = "users"):
        """
        初始化MongoDB账户存储

        Args:
            database: motor数据库对象
            collection_name: 集合名称
        """
        self.db = database
        self.users_collection = database[collection_name]

    async def ensure_indexes(self) -> None:
        """创建邮箱唯一索引和会话ID稀疏索引"""
        await self.users_collection.create_index([('email', ASCENDING)], unique=True)
        await self.users_collection.create_index([('session_id', ASCENDING)], unique=True, sparse=True)

    @staticmethod
    def _to_document(account: Account) -> dict:
        data = account.to_dict(include_sensitive=True)
        data['_id'] = data.pop('id')
        # 时间字段以BSON日期存储
        data['last_login_at'] = account.last_login_at
        data['last_password_change_at'] = account.last_password_change_at
        data['created_at'] = account.created_at
        data['updated_at'] = account.updated_at
        return data

    async def create(self, account: Account) -> Account:
        document = self._to_document(account)
        if document['session_id'] is None:
            del document['session_id']

        try:
            await self.users_collection.insert_one(document)
        except DuplicateKeyError:
            raise AccountExistsError()
        return account

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        data = await self.users_collection.find_one({'_id': account_id})
        return Account.from_dict(data) if data else None

    async def find_by_email(self, email: str) -> Optional[Account]:
        data = await self.users_collection.find_one({'email': normalize_email(email)})
        return Account.from_dict(data) if data else None

    async def save(self, account: Account) -> None:
        """
        保存账户，密码哈希和会话ID在同一次单文档更新中写入

        Args:
            account: 账户对象
        """
        account.updated_at = utcnow()
        document = self._to_document(account)
        account_id = document.pop('_id')

        update = {'$set': document}
        if document['session_id'] is None:
            # 稀疏索引要求注销后删除字段而不是写入null
            del document['session_id']
            update['$unset'] = {'session_id': ''}

        await self.users_collection.update_one({'_id': account_id}, update, upsert=True)
