import sys
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

# Add the packages and the console app to the path
ROOT = Path(__file__).parent.parent
for pkg in ("common", "ledger", "cadence"):
    sys.path.insert(0, str(ROOT / "packages" / pkg))
sys.path.insert(0, str(ROOT))

from common.config import Settings
from common.notifications import NotificationDispatcher
from common.security import SecurityLog
from ledger.lifecycle import ClientLifecycle
from ledger.models import Plan
from ledger.store import ClientStore

TZ = "America/Sao_Paulo"

# Monday 2025-03-10 12:00 in Sao Paulo
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=ZoneInfo(TZ)).timestamp()


class FakeClock:
    """Callable clock that tests can move by hand."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records deliveries instead of writing them; can be told to fail."""

    def __init__(self) -> None:
        self.emails = []
        self.sms = []
        self.fail_for: set[str] = set()

    def send_email(self, message) -> None:
        if message.to in self.fail_for:
            raise ConnectionError(f"SMTP refused {message.to}")
        self.emails.append(message)

    def send_sms(self, message) -> None:
        if message.to in self.fail_for:
            raise ConnectionError(f"SMS gateway refused {message.to}")
        self.sms.append(message)


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory for test databases."""
    return tmp_path


@pytest.fixture
def db_path(tmp_dir):
    return str(tmp_dir / "test.db")


@pytest.fixture
def settings(tmp_dir):
    return Settings(
        data_dir=str(tmp_dir / "nuvelon"),
        timezone=TZ,
        admin_emails=["ops@nuvelon.test", "cto@nuvelon.test"],
        scheduler_poll_seconds=0.05,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def security_log():
    return SecurityLog(max_events=100)


@pytest.fixture
def store(tmp_dir):
    return ClientStore(tmp_dir / "clients.db")


@pytest.fixture
def plans(store):
    monthly = Plan(id="monthly", name="Monthly Basic", duration_months=1, price=29.90)
    quarterly = Plan(id="quarterly", name="Quarterly Premium", duration_months=3, price=129.90)
    yearly = Plan(id="yearly", name="Yearly Pro", duration_months=12, price=499.90)
    for plan in (monthly, quarterly, yearly):
        store.save_plan(plan)
    return {"monthly": monthly, "quarterly": quarterly, "yearly": yearly}


@pytest.fixture
def lifecycle(store, security_log, clock, plans):
    return ClientLifecycle(store, security_log, timezone=TZ, clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(transport, security_log, clock):
    return NotificationDispatcher(
        transport=transport,
        security_log=security_log,
        admin_emails=["ops@nuvelon.test", "cto@nuvelon.test"],
        timezone=TZ,
        max_history=50,
        clock=clock,
    )
