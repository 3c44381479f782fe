"""
バックグラウンド取得のサンプル

Action で別スレッドの取得処理を開始し、PollUntil で完了を待機してから
Assert で結果を検証する。

実行例::

    steptest run flows/country_lookup.py:CountryLookup
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from steptest import StepTest


@dataclass
class User:
    name: str
    age: int

    def fetch_country_from_ip_address(self, callback: Callable[[str], None]) -> None:
        def worker() -> None:
            time.sleep(0.2)
            callback("Canada")

        threading.Thread(target=worker, daemon=True).start()


class CountryLookup(StepTest):
    user: Optional[User] = None
    country: Optional[str] = None

    def setup(self) -> None:
        self.country = None

    def cleanup(self) -> None:
        self.user = None

    def create_test_steps(self) -> None:
        self.add_step("Create user", self.create_user)
        self.add_step("Fetch country", self.fetch_country)
        self.add_wait_until("Wait until country is fetched", lambda: self.country is not None, timeout=10_000)
        self.add_assert("Country is Canada", lambda: self.country == "Canada")

    def create_user(self) -> None:
        self.user = User("Maya", 22)

    def fetch_country(self) -> None:
        if self.user is None:
            raise RuntimeError("ユーザーが作成されていません")
        self.user.fetch_country_from_ip_address(self.set_country)

    def set_country(self, country: str) -> None:
        self.country = country
