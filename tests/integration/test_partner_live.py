"""Live integration test for the partner budget edit call.

Marked ``@pytest.mark.integration`` and excluded from the default run
(``addopts = "-m 'not integration'"``).  Run on demand with::

    pytest -m integration tests/integration/test_partner_live.py

The test edits a real campaign, so point it at a sandbox shop.  It is skipped
unless every ``BUDGETBOT_TEST_*`` variable below is present in the
environment or ``.env``.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from budgetbot.core.models import CampaignKind, Schedule, ShopCredentials
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.executor import RetryingExecutor
from budgetbot.partner.client import PartnerApiClient

logger = logging.getLogger(__name__)

load_dotenv()

_REQUIRED = (
    "BUDGETBOT_TEST_SHOP_ID",
    "BUDGETBOT_TEST_CAMPAIGN_ID",
    "BUDGETBOT_TEST_BUDGET",
    "BUDGETBOT_TEST_ACCESS_TOKEN",
    "BUDGETBOT_TEST_PARTNER_ID",
    "BUDGETBOT_TEST_PARTNER_KEY",
)
_MISSING = [name for name in _REQUIRED if not os.environ.get(name)]

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        bool(_MISSING),
        reason=f"Live partner credentials not configured (missing: {', '.join(_MISSING)}).",
    ),
]


@pytest.fixture()
def live_creds() -> ShopCredentials:
    return ShopCredentials(
        shop_id=int(os.environ["BUDGETBOT_TEST_SHOP_ID"]),
        access_token=os.environ["BUDGETBOT_TEST_ACCESS_TOKEN"],
        partner_id=int(os.environ["BUDGETBOT_TEST_PARTNER_ID"]),
        partner_key=os.environ["BUDGETBOT_TEST_PARTNER_KEY"],
    )


async def test_set_budget_live(live_creds: ShopCredentials) -> None:
    """The signed request is accepted and returns a ``response`` payload."""
    settings = Settings()
    ad_type = CampaignKind(os.environ.get("BUDGETBOT_TEST_AD_TYPE", "auto"))

    async with PartnerApiClient(settings) as client:
        payload = await client.set_budget(
            live_creds,
            shop_id=live_creds.shop_id,
            campaign_id=int(os.environ["BUDGETBOT_TEST_CAMPAIGN_ID"]),
            ad_type=ad_type,
            budget=int(os.environ["BUDGETBOT_TEST_BUDGET"]),
        )

    logger.info("Live budget edit response: %s", payload)
    assert isinstance(payload, dict)


async def test_executor_live_reports_success(live_creds: ShopCredentials) -> None:
    settings = Settings()
    schedule = Schedule(
        id="live-test",
        shop_id=live_creds.shop_id,
        campaign_id=int(os.environ["BUDGETBOT_TEST_CAMPAIGN_ID"]),
        ad_type=CampaignKind(os.environ.get("BUDGETBOT_TEST_AD_TYPE", "auto")),
        budget=int(os.environ["BUDGETBOT_TEST_BUDGET"]),
        hour_start=0,
        hour_end=24,
    )

    async with PartnerApiClient(settings) as client:
        report = await RetryingExecutor(client, max_retries=1).execute(live_creds, schedule)

    assert report.result.succeeded, report.result.error
