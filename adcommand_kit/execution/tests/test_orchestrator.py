"""
End-to-end runs of the orchestrator against a scripted model and a mock gateway.
"""

import asyncio
import pytest

from adcommand_kit.ckit_ask_model import ModelTurn
from adcommand_kit.integrations.facebook.exceptions import FacebookAPIError
from adcommand_kit.integrations.facebook.testing import (
    MockToolGateway,
    ScriptedChatModel,
    generate_mock_material,
    tool_call,
    turn,
)
from ..config import ExecutorConfig
from ..errors import BlockingActionType, BlockingCode
from ..events import StreamEventType, TimelineReducer
from ..orchestrator import CommandOrchestrator
from ..sessions import SessionStatus, SessionStore
from ..steps import StepStatus, StepType

ACCOUNT = "act_123"
CAMPAIGN_ID = "120000000000001"
ADSET_ID = "120000000000002"


class StaticMaterials:
    def __init__(self, *materials):
        self.materials = list(materials)

    async def list_materials(self, account_id):
        return list(self.materials)


class BrokenMaterials:
    async def list_materials(self, account_id):
        raise RuntimeError("materials service down")


def make_orchestrator(model, gateway=None, materials=None, sessions=None, **config):
    config.setdefault("rate_limit_backoff", 0.0)
    return CommandOrchestrator(
        model,
        gateway or MockToolGateway(),
        materials_source=materials,
        config=ExecutorConfig(**config),
        sessions=sessions,
    )


def campaign_call(**overrides):
    args = {"accountId": ACCOUNT, "name": "Spring", "objective": "OUTCOME_TRAFFIC", "dailyBudget": 1500}
    args.update(overrides)
    return tool_call("create_campaign", args)


def adset_call(**overrides):
    args = {"accountId": ACCOUNT, "campaignId": "ACTUAL_CAMPAIGN_ID", "name": "Set", "targeting": {}}
    args.update(overrides)
    return tool_call("create_adset", args)


def ad_call(name="Ad 1", **creative):
    creative.setdefault("title", "Spring sale")
    creative.setdefault("body", "Everything half price")
    return tool_call("create_ad", {"accountId": ACCOUNT, "adSetId": "__adset_id__", "name": name, "creative": creative})


def step_by_key(result, key):
    return next(s for s in result.steps if s.key == key)


class TestCampaignCreation:
    """Full campaign -> ad set -> ad runs."""

    @pytest.mark.asyncio
    async def test_romanian_men_targeting_enforced(self):
        """Test the command's audience overrides what the model sent."""
        banner = generate_mock_material(id="m1", filename="banner.jpg")
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call(name="Leads RO", objective="OUTCOME_LEADS")),
            turn(adset_call(targeting={"geoLocations": {"countries": ["RO"]}, "genders": [1, 2], "ageMin": 18, "ageMax": 65})),
            turn(ad_call(imageUrl="https://example.com/made-up.jpg")),
        ])
        command = "Create leads campaign for Romanian men on Romanian language, aged 20-45, $15 daily budget, link https://shop.example.com/offer"
        result = await make_orchestrator(model, gateway, StaticMaterials(banner)).run(command, ACCOUNT, tenant_id="t1")

        assert result.success
        assert result.summary.final_status == "success"
        assert (result.summary.steps_completed, result.summary.total_steps) == (3, 3)
        assert result.message == "Campaign + Ad Set + 1 Ad created successfully."

        adset = gateway.calls_to("create_adset")[0]
        assert adset["campaignId"] == CAMPAIGN_ID
        assert adset["dailyBudget"] == 1500
        assert adset["optimizationGoal"] == "LEAD_GENERATION"
        assert adset["billingEvent"] == "IMPRESSIONS"
        assert adset["targeting"] == {"geoLocations": {"countries": ["RO"]}, "genders": [1], "ageMin": 20, "ageMax": 45, "locales": ["ro"]}

        fixes = step_by_key(result, "adset").fixes_applied
        assert "Used the campaign ID generated in the previous step." in fixes
        assert "Inherited ad set daily budget from campaign settings." in fixes
        assert "Enforced gender targeting: male." in fixes
        assert "Enforced minimum age: 20." in fixes
        assert "Aligned optimization goal with leads objective." in fixes

        creative = gateway.calls_to("create_ad")[0]["creative"]
        assert creative["imageUrl"] == banner.file_url
        assert creative["linkUrl"] == "https://shop.example.com/offer"
        ad_fixes = step_by_key(result, "ad").fixes_applied
        assert "Replaced invalid image URL with uploaded material URL." in ad_fixes
        assert "Extracted destination URL from command text." in ad_fixes

        assert result.created_ids["campaignId"] == CAMPAIGN_ID
        assert result.created_ids["adSetId"] == ADSET_ID
        assert "adId" in result.created_ids

    @pytest.mark.asyncio
    async def test_leads_objective_keeps_explicit_goal(self):
        """Test a valid goal the model chose for a leads campaign is not overwritten."""
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call(objective="OUTCOME_LEADS")),
            turn(adset_call(optimizationGoal="QUALITY_LEAD", billingEvent="IMPRESSIONS")),
            turn(ad_call(linkUrl="https://x.com")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a leads campaign", ACCOUNT)
        assert gateway.calls_to("create_adset")[0]["optimizationGoal"] == "QUALITY_LEAD"
        assert "Aligned optimization goal with leads objective." not in step_by_key(result, "adset").fixes_applied

    @pytest.mark.asyncio
    async def test_leads_objective_replaces_generic_goal(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call(objective="OUTCOME_LEADS")),
            turn(adset_call(optimizationGoal="LEADS")),
            turn(ad_call(linkUrl="https://x.com")),
        ])
        await make_orchestrator(model, gateway).run("Create a leads campaign", ACCOUNT)
        assert gateway.calls_to("create_adset")[0]["optimizationGoal"] == "LEAD_GENERATION"

    @pytest.mark.asyncio
    async def test_preflight_runs_once_before_campaign(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign for Romanians", ACCOUNT)
        assert [c["name"] for c in gateway.calls][:2] == ["preflight_create_campaign_bundle", "create_campaign"]
        assert gateway.calls_to("preflight_create_campaign_bundle") == [
            {"accountId": ACCOUNT, "adSetTargeting": {"geoLocations": {"countries": ["RO"]}}}
        ]
        assert result.steps[0].key == "campaign_preflight"
        assert result.steps[0].status == StepStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_invented_gender_removed(self):
        """Test a nationality never turns into a gender restriction."""
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call(targeting={"geoLocations": {"countries": ["RO"]}, "genders": [1]})),
            turn(ad_call(linkUrl="https://x.com")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign for Romanians", ACCOUNT)
        assert "genders" not in gateway.calls_to("create_adset")[0]["targeting"]
        assert "Removed AI-hallucinated gender restriction (user did not specify gender)." in step_by_key(result, "adset").fixes_applied

    @pytest.mark.asyncio
    async def test_fallback_budget_and_tracking_params(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call(dailyBudget=None)),
            turn(adset_call()),
            turn(ad_call(linkUrl="https://shop.com/p?utm_source=fb&utm_medium=paid")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        assert gateway.calls_to("create_adset")[0]["dailyBudget"] == 1500
        assert "Applied a safe fallback daily budget of $15/day." in step_by_key(result, "adset").fixes_applied
        creative = gateway.calls_to("create_ad")[0]["creative"]
        assert creative["linkUrl"] == "https://shop.com/p"
        assert creative["urlParameters"] == "utm_source=fb&utm_medium=paid"

    @pytest.mark.asyncio
    async def test_url_macros_moved_to_parameters(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call()),
            turn(ad_call(linkUrl="https://shop.com/p?utm_campaign={{campaign.name}}")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        creative = gateway.calls_to("create_ad")[0]["creative"]
        assert creative["linkUrl"] == "https://shop.com/p"
        assert creative["urlParameters"] == "utm_campaign={{campaign.name}}"
        assert "Moved Facebook URL macros into URL parameters field." in step_by_key(result, "ad").fixes_applied

    @pytest.mark.asyncio
    async def test_video_material_gets_thumbnail(self):
        hero = generate_mock_material(id="v1", filename="hero.mp4")
        thumb = generate_mock_material(id="i1", filename="thumb.jpg")
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        command = "Create a traffic campaign, use hero.mp4 for the first ad"
        result = await make_orchestrator(model, gateway, StaticMaterials(hero, thumb)).run(command, ACCOUNT)
        creative = gateway.calls_to("create_ad")[0]["creative"]
        assert creative["videoUrl"] == hero.file_url
        assert creative["imageUrl"] == thumb.file_url
        fixes = step_by_key(result, "ad").fixes_applied
        assert "Added video creative from uploaded materials." in fixes
        assert "Added thumbnail image required for video ad." in fixes

    @pytest.mark.asyncio
    async def test_mp4_moved_out_of_image_slot(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call()),
            turn(ad_call(linkUrl="https://x.com", imageUrl="http://localhost:3000/uploads/clip.mp4")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        creative = gateway.calls_to("create_ad")[0]["creative"]
        assert creative["videoUrl"] == "http://localhost:3000/uploads/clip.mp4"
        assert "imageUrl" not in creative
        assert "Moved MP4 media from image slot to video slot." in step_by_key(result, "ad").fixes_applied

    @pytest.mark.asyncio
    async def test_materials_failure_degrades(self):
        """Test an unreachable materials service only means no materials."""
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, materials=BrokenMaterials()).run("Create a traffic campaign", ACCOUNT)
        assert result.success
        assert "No materials available" in model.requests[0][0]["content"]


class TestRetries:
    """Bounded retries and auto-fixes."""

    @pytest.mark.asyncio
    async def test_bid_required_fixed_on_retry(self):
        """Test two bid failures then success: one step, three attempts."""
        bid_error = "(#100) Bid amount required for this bid strategy"
        gateway = MockToolGateway().fail("create_adset", bid_error, bid_error)
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call()),
            turn(adset_call()),
            turn(adset_call()),
            turn(ad_call(linkUrl="https://x.com")),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign in Germany", ACCOUNT)

        adset = step_by_key(result, "adset")
        assert adset.status == StepStatus.SUCCESS
        assert adset.attempts == 3
        assert "Added a fallback bid cap based on budget and retried." in adset.fixes_applied
        assert "Auto-fixed: Applied fallback bid amount and retried." in adset.fixes_applied
        calls = gateway.calls_to("create_adset")
        assert "bidAmount" not in calls[0]
        assert calls[1]["bidAmount"] == 300
        assert calls[2]["bidAmount"] == 300
        assert len([s for s in result.steps if s.type == StepType.ADSET]) == 1
        assert result.summary.retries == 2
        assert result.summary.final_status == "success"

    @pytest.mark.asyncio
    async def test_advantage_audience_disabled_on_retry(self):
        gateway = MockToolGateway().fail("create_adset", "Advantage audience flag is required")
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        assert gateway.calls_to("create_adset")[1]["targeting"]["targetingAutomation"] == {"advantageAudience": 0}
        assert "Disabled Advantage Audience to satisfy Meta requirement." in step_by_key(result, "adset").fixes_applied

    @pytest.mark.asyncio
    async def test_retry_ceiling_stops_run(self):
        """Test the third consecutive failure ends the run without a fourth call."""
        gateway = MockToolGateway().fail("create_adset", *["Unexpected internal error"] * 5)
        model = ScriptedChatModel([turn(campaign_call())] + [turn(adset_call()) for _ in range(5)])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)

        assert len(gateway.calls_to("create_adset")) == 3
        adset = step_by_key(result, "adset")
        assert adset.status == StepStatus.ERROR
        assert adset.attempts == 3
        assert result.blocking_error is None
        assert result.summary.final_status == "partial"

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_and_retries(self):
        gateway = MockToolGateway().fail("create_campaign", "User request limit reached")
        model = ScriptedChatModel([turn(campaign_call()), turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway, rate_limit_backoff=0.01).run("Create a traffic campaign", ACCOUNT)
        campaign = step_by_key(result, "campaign")
        assert campaign.status == StepStatus.SUCCESS
        assert campaign.attempts == 2
        assert result.success

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_resets_per_tool(self, monkeypatch):
        """Test throttles on a later tool still back off after earlier ones were absorbed."""
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("asyncio.sleep", record_sleep)
        throttled = "User request limit reached"
        gateway = MockToolGateway().fail("create_campaign", throttled, throttled).fail("create_adset", throttled, throttled)
        model = ScriptedChatModel(
            [turn(campaign_call()) for _ in range(3)]
            + [turn(adset_call()) for _ in range(3)]
            + [turn(ad_call(linkUrl="https://x.com"))]
        )
        result = await make_orchestrator(model, gateway, rate_limit_backoff=1.0).run("Create a traffic campaign", ACCOUNT)

        assert delays == [1.0, 2.0, 1.0, 2.0]
        assert step_by_key(result, "adset").attempts == 3
        assert result.success

    @pytest.mark.asyncio
    async def test_missing_link_reported_on_step(self):
        """Test a create_ad without any destination URL fails with a clear message."""
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call())])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        ad = step_by_key(result, "ad")
        assert ad.status == StepStatus.ERROR
        assert "Missing required linkUrl" in ad.technical_details
        assert ad.user_title == "Some fields were rejected"
        assert gateway.calls_to("create_ad") == []
        assert result.summary.final_status == "partial"


class TestBlocking:
    """Blocking account problems."""

    @pytest.mark.asyncio
    async def test_payment_failure_rolls_back(self):
        """Test a billing failure on create_ad pauses what was created and stops."""
        gateway = MockToolGateway().fail("create_ad", "No payment method on this ad account")
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT, tenant_id="t1")

        blocking = result.blocking_error
        assert blocking.code == BlockingCode.PAYMENT_METHOD_REQUIRED
        assert blocking.action is None
        assert blocking.next_steps
        assert result.message == blocking.user_message
        assert not result.success
        assert result.summary.final_status == "partial"
        assert result.created_ids == {"campaignId": CAMPAIGN_ID, "adSetId": ADSET_ID, "adSetIds": [ADSET_ID]}

        assert gateway.calls_to("update_adset") == [{"adSetId": ADSET_ID, "status": "PAUSED"}]
        assert gateway.calls_to("update_campaign") == [{"campaignId": CAMPAIGN_ID, "status": "PAUSED"}]
        ad = step_by_key(result, "ad")
        assert ad.status == StepStatus.ERROR
        assert ad.meta["rollback"] == {"paused": [ADSET_ID, CAMPAIGN_ID], "failed": []}

    @pytest.mark.asyncio
    async def test_rollback_failure_is_recorded_not_raised(self):
        gateway = (
            MockToolGateway()
            .fail("create_ad", "No payment method on this ad account")
            .fail("update_campaign", FacebookAPIError(code=2, message="Service temporarily unavailable"))
        )
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        assert step_by_key(result, "ad").meta["rollback"] == {"paused": [ADSET_ID], "failed": [CAMPAIGN_ID]}
        assert result.blocking_error.code == BlockingCode.PAYMENT_METHOD_REQUIRED

    @pytest.mark.asyncio
    async def test_preflight_blocks_before_any_creation(self):
        """Test a DSA preflight failure creates nothing and answers every tool call."""
        gateway = MockToolGateway().fail("preflight_create_campaign_bundle", "DSA_REQUIRED: beneficiary missing")
        model = ScriptedChatModel([
            turn(campaign_call(), adset_call(targeting={"geoLocations": {"countries": ["RO"]}})),
        ])
        orch = make_orchestrator(model, gateway)
        feed_run = await orch.run("Create a traffic campaign in Romania", ACCOUNT, tenant_id="tenant-1")

        assert gateway.calls_to("create_campaign") == []
        assert gateway.calls_to("create_adset") == []
        assert gateway.calls_to("preflight_create_campaign_bundle")[0]["adSetTargeting"] == {"geoLocations": {"countries": ["RO"]}}

        blocking = feed_run.blocking_error
        assert blocking.code == BlockingCode.DSA_REQUIRED
        assert blocking.action.type == BlockingActionType.OPEN_DSA_SETTINGS
        assert blocking.action.tenant_id == "tenant-1"
        assert blocking.action.ad_account_id == ACCOUNT
        assert feed_run.summary.final_status == "error"
        assert feed_run.created_ids is None
        assert step_by_key(feed_run, "campaign_preflight").status == StepStatus.ERROR
        assert step_by_key(feed_run, "campaign").status == StepStatus.ERROR
        assert "adset" not in {s.key for s in feed_run.steps}

    @pytest.mark.asyncio
    async def test_calls_after_blocking_not_executed(self):
        """Test calls after a blocking failure in the same turn are skipped."""
        gateway = MockToolGateway().fail("get_campaigns", "permission denied for this ad account")
        model = ScriptedChatModel([
            turn(tool_call("get_campaigns", {"accountId": ACCOUNT}, id="c1"), tool_call("update_campaign", {"campaignId": "1", "status": "PAUSED"}, id="c2")),
        ])
        orch = make_orchestrator(model, gateway)
        result = await orch.run("Pause all campaigns", ACCOUNT)
        assert gateway.calls_to("update_campaign") == []
        assert result.blocking_error.code is None
        assert result.blocking_error.user_title == "Permissions issue"
        assert [s.key for s in result.steps] == ["tool:get_campaigns"]
        assert len(model.requests) == 1


class TestIdempotence:
    """Entities are never created twice in one run."""

    @pytest.mark.asyncio
    async def test_second_create_campaign_reuses_id(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(campaign_call()), turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT)
        assert len(gateway.calls_to("create_campaign")) == 1
        assert len(gateway.calls_to("preflight_create_campaign_bundle")) == 1
        assert len([s for s in result.steps if s.type == StepType.CAMPAIGN]) == 1
        reply = model.requests[2][-2]
        assert reply["role"] == "tool"
        assert '"reused": true' in reply["content"]

    @pytest.mark.asyncio
    async def test_never_more_ads_than_requested(self):
        """Test extra create_ad calls past the requested count are not executed."""
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call()),
            turn(
                ad_call("Ad 1", linkUrl="https://x.com"),
                ad_call("Ad 2", linkUrl="https://x.com"),
                ad_call("Ad 3", linkUrl="https://x.com"),
            ),
        ])
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign with 2 ads", ACCOUNT)
        assert len(gateway.calls_to("create_ad")) == 2
        assert [s.key for s in result.steps if s.type == StepType.AD] == ["ad", "ad:2"]
        assert step_by_key(result, "ad:2").title == "Ad Creation 2"
        assert step_by_key(result, "ad:2").summary == "2 of 2 ads created successfully."
        assert result.message == "Campaign + Ad Set + 2 Ads created successfully."

    @pytest.mark.asyncio
    async def test_model_stops_before_ads_is_partial(self):
        """Test a run that ends after the ad set reports partial, not success with zero ads."""
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call())])
        result = await make_orchestrator(model).run("Create a traffic campaign with 2 ads", ACCOUNT)
        assert not result.success
        assert result.summary.final_status == "partial"
        assert (result.summary.steps_completed, result.summary.total_steps) == (2, 3)
        assert result.message == "Created Campaign + Ad Set and 0 of 2 requested ads. The command was only partially executed."

    @pytest.mark.asyncio
    async def test_fewer_ads_than_requested_is_partial(self):
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call("Ad 1", linkUrl="https://x.com"))])
        result = await make_orchestrator(model).run("Create a traffic campaign with 2 ads", ACCOUNT)
        assert result.summary.final_status == "partial"
        assert result.summary.steps_completed == 3
        assert result.message.startswith("Created Campaign + Ad Set and 1 of 2 requested ads.")

    @pytest.mark.asyncio
    async def test_nudges_for_next_ad(self):
        """Test the model is asked for the next ad until the count is reached."""
        model = ScriptedChatModel([
            turn(campaign_call()),
            turn(adset_call()),
            turn(ad_call("Ad 1", linkUrl="https://x.com")),
            turn(ad_call("Ad 2", linkUrl="https://x.com")),
        ])
        result = await make_orchestrator(model).run("Create a traffic campaign with 2 ads", ACCOUNT)
        assert len(model.requests) == 4
        assert "Now create an adset" in model.requests[1][-1]["content"]
        assert "Now create ad 2 of 2" in model.requests[3][-1]["content"]
        assert result.success


class TestResume:
    """Continuing an earlier run."""

    @pytest.mark.asyncio
    async def test_resume_reuses_created_entities(self):
        store = SessionStore()
        previous = store.create("Create a traffic campaign", ACCOUNT)
        store.update(previous.id, created_ids={"campaignId": "900", "adSetId": "901", "adSetIds": ["901"]})
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(campaign_call()), turn(ad_call(linkUrl="https://x.com", name="Ad 1"))])
        orch = make_orchestrator(model, gateway, sessions=store)
        result = await orch.run("Create a traffic campaign", ACCOUNT, resume_from_run_id=previous.run_id)

        assert "Campaign ID 900 already exists" in model.requests[0][0]["content"]
        assert gateway.calls_to("create_campaign") == []
        assert gateway.calls_to("preflight_create_campaign_bundle") == []
        assert gateway.calls_to("create_ad")[0]["adSetId"] == "901"
        assert step_by_key(result, "campaign").meta == {"resumed": True}
        assert result.created_ids["campaignId"] == "900"
        assert result.success

    @pytest.mark.asyncio
    async def test_unknown_run_starts_fresh(self):
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        gateway = MockToolGateway()
        result = await make_orchestrator(model, gateway).run("Create a traffic campaign", ACCOUNT, resume_from_run_id="gone")
        assert len(gateway.calls_to("create_campaign")) == 1
        assert result.success


class TestManagement:
    """Commands that manage existing campaigns."""

    @pytest.mark.asyncio
    async def test_pause_low_ctr(self):
        """Test every tool call is answered with its own tool_call_id."""
        gateway = MockToolGateway()
        model = ScriptedChatModel([
            turn(
                tool_call("get_campaigns", {"accountId": ACCOUNT}, id="c1"),
                tool_call("update_campaign", {"campaignId": "120000000000100", "status": "PAUSED"}, id="c2"),
            ),
        ])
        result = await make_orchestrator(model, gateway).run("Pause all campaigns with CTR below 1%", ACCOUNT)

        assert result.success
        assert result.message == "Updated 1 campaign(s): Pause all campaigns with CTR below 1%"
        assert (result.summary.steps_completed, result.summary.total_steps) == (2, 2)
        assert [s.key for s in result.steps] == ["tool:get_campaigns", "tool:update_campaign"]
        second = model.requests[1]
        assert [m["role"] for m in second[-3:]] == ["assistant", "tool", "tool"]
        assert [m["tool_call_id"] for m in second[-2:]] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_duplicate_completes_run(self):
        gateway = MockToolGateway()
        model = ScriptedChatModel([turn(tool_call("duplicate_campaign", {"campaignId": "120000000000100", "deepCopy": True}))])
        result = await make_orchestrator(model, gateway).run("Duplicate campaign Leads Campaign", ACCOUNT)
        assert result.message == "Duplicated 1 campaign(s) with all ad sets and ads"
        assert len(model.requests) == 1
        assert result.success


class TestModelFailures:
    """The model itself failing."""

    @pytest.mark.asyncio
    async def test_model_exception_ends_run(self):
        def script(messages):
            raise RuntimeError("upstream 500")

        result = await make_orchestrator(ScriptedChatModel(script=script)).run("Create a traffic campaign", ACCOUNT)
        assert not result.success
        assert result.summary.final_status == "error"
        assert "upstream 500" in result.message

    @pytest.mark.asyncio
    async def test_model_timeout(self):
        class SlowModel:
            async def next_turn(self, messages, tools):
                await asyncio.sleep(1)
                return ModelTurn(content="late")

        result = await make_orchestrator(SlowModel(), model_timeout=0.01).run("Create a traffic campaign", ACCOUNT)
        assert "did not answer" in result.message
        assert not result.success

    @pytest.mark.asyncio
    async def test_iteration_ceiling(self):
        model = ScriptedChatModel(script=lambda messages: turn(tool_call("get_campaigns", {"accountId": ACCOUNT})))
        result = await make_orchestrator(model, max_iterations=3).run("Show campaigns", ACCOUNT)
        assert len(model.requests) == 3
        assert "step limit" in result.message
        assert result.summary.final_status == "partial"


class TestLaunch:
    """Background runs with a live feed."""

    @pytest.mark.asyncio
    async def test_launch_streams_and_stores_session(self):
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        orch = make_orchestrator(model)
        session = orch.launch("Create a traffic campaign", ACCOUNT, tenant_id="t1")
        live = []

        async def consume():
            async for event in session.feed.subscribe():
                live.append(event)

        consumer = asyncio.create_task(consume())
        result = await session.task
        await asyncio.wait_for(consumer, timeout=1)

        assert result.success
        stored = orch.sessions.get(session.id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.summary["finalStatus"] == "success"
        assert stored.created_ids["campaignId"] == CAMPAIGN_ID
        assert [s["key"] for s in stored.steps] == ["campaign_preflight", "campaign", "adset", "ad"]

        assert live[0].type == StreamEventType.STEP_START
        assert live[-1].type == StreamEventType.TIMELINE_DONE
        assert [e.seq for e in live] == list(range(1, len(live) + 1))

        replay = [e async for e in session.feed.subscribe()]
        assert [e.seq for e in replay] == [e.seq for e in live]
        reducer = TimelineReducer()
        for event in replay:
            reducer.apply(event.type.value, event.payload)
        assert [s.key for s in reducer.ordered_steps()] == ["campaign_preflight", "campaign", "adset", "ad"]
        assert reducer.success is True

    @pytest.mark.asyncio
    async def test_launch_blocking_marks_session_error(self):
        gateway = MockToolGateway().fail("create_ad", "No payment method on this ad account")
        model = ScriptedChatModel([turn(campaign_call()), turn(adset_call()), turn(ad_call(linkUrl="https://x.com"))])
        orch = make_orchestrator(model, gateway)
        session = orch.launch("Create a traffic campaign", ACCOUNT)
        await session.task
        assert session.status == SessionStatus.ERROR
        assert session.blocking_error["code"] == "PAYMENT_METHOD_REQUIRED"
        assert session.feed.history[-1].type == StreamEventType.EXECUTION_ERROR
