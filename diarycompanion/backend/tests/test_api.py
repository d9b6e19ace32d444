import unittest
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from unittest import mock

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from diarycompanion.backend.app import main, storage
from diarycompanion.backend.app.database import Base, User, get_cipher
from diarycompanion.backend.app.schemas import (
    BoundarySettings,
    ConversationCreate,
    EntryCreate,
    EntryUpdate,
    FeedbackCreate,
    MessageCreate,
    PreferencesUpdate,
    RiskAssessmentRequest,
    TextAnalysisRequest,
)


class ApiFunctionTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine)()
        self.user = User(email="writer@example.com", hashed_password="x")
        self.db.add(self.user)
        self.db.commit()
        self.services = main.build_services(main.settings)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def create(self, content, entry_date=None):
        return main.create_entry(EntryCreate(content=content, entry_date=entry_date), self.db, self.user, self.services)

    def test_entry_is_analyzed_when_long_enough(self):
        response = self.create("I am so grateful and happy today, thank you")
        self.assertIsNotNone(response.analysis)
        self.assertGreater(response.analysis.sentiment.compound, 0.3)
        self.assertIsNone(response.risk)

    def test_short_entry_skips_analysis(self):
        response = self.create("ok day")
        self.assertIsNone(response.analysis)
        with self.assertRaises(HTTPException) as ctx:
            main.get_entry_analysis(response.id, self.db, self.user)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_empty_entry_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            self.create("   ")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_risky_entry_carries_assessment_and_flags(self):
        response = self.create("I can't go on, nothing matters anymore")
        self.assertEqual(response.risk.level, "high")
        self.assertTrue(response.risk.resources)
        flags = main.get_safety_flags(30, self.db, self.user)
        self.assertTrue(flags)
        self.assertEqual(flags[0]["source"], "entry")
        self.assertEqual(flags[0]["entry_id"], response.id)

    def test_distress_entry_with_urgency_is_not_critical(self):
        response = self.create("I feel hopeless and worthless tonight, nothing matters")
        entry = storage.get_entry(self.db, self.user.id, response.id)
        analysis, assessment = main.analyze_and_flag(self.db, self.services, self.user, entry)
        self.assertIsNotNone(analysis)
        self.assertEqual(assessment.level, "high")
        self.assertEqual(response.risk.level, "high")
        flags = main.get_safety_flags(30, self.db, self.user)
        self.assertTrue(flags)
        self.assertNotIn("critical", {flag["severity"] for flag in flags})

    def test_update_reanalyzes_entry(self):
        created = self.create("I am so grateful and happy today, thank you")
        updated = main.update_entry(
            created.id, EntryUpdate(content="Today I feel sad and lonely and tired"), self.db, self.user, self.services
        )
        self.assertLess(updated.analysis.sentiment.compound, 0)
        latest = main.get_entry_analysis(created.id, self.db, self.user)
        self.assertEqual(latest.id, updated.analysis.id)

    def test_unknown_entry_is_404(self):
        with self.assertRaises(HTTPException) as ctx:
            main.get_entry(9999, self.db, self.user)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_list_and_delete_entries(self):
        first = self.create("A calm and peaceful evening walk by the river")
        self.create("Busy day at work with a long meeting")
        self.assertEqual(len(main.list_entries(None, 50, self.db, self.user)), 2)
        main.delete_entry(first.id, self.db, self.user)
        self.assertEqual(len(main.list_entries(None, 50, self.db, self.user)), 1)

    def test_adhoc_analysis_is_not_stored(self):
        analysis = main.analyze_text(TextAnalysisRequest(content="I am thrilled and excited"), self.user, self.services)
        self.assertEqual(analysis.primary_emotions[0].name, "excitement")
        self.assertEqual(storage.list_analyses(self.db, self.user.id), [])

    def test_patterns_and_insights(self):
        for day, content in enumerate(
            ["I feel sad about work and my boss", "Still sad, the meeting at work was rough", "Work stress again, sad"]
        ):
            self.create(content, date(2024, 5, 1) + timedelta(days=day))
        patterns = main.get_patterns("weekly", self.db, self.user)
        self.assertEqual(patterns.analysis_count, 3)
        insights = main.get_insights("weekly", False, self.db, self.user, self.services)
        self.assertTrue(insights.summary.startswith("Based on 3"))
        cached = main.get_insights("weekly", False, self.db, self.user, self.services)
        self.assertEqual(cached.generated_at, insights.generated_at)

    def test_insights_respect_sharing_preference(self):
        main.update_preferences(
            PreferencesUpdate(boundary_settings=BoundarySettings(share_insights_with_user=False)), self.db, self.user
        )
        with self.assertRaises(HTTPException) as ctx:
            main.get_insights("weekly", False, self.db, self.user, self.services)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_safety_assess_and_resources(self):
        assessment = main.assess_safety(
            RiskAssessmentRequest(text="ok", recent_messages=["I want to end it all"]), self.db, self.user, self.services
        )
        self.assertEqual(assessment.level, "critical")
        self.assertEqual(main.get_safety_resources("low"), [])
        self.assertTrue(main.get_safety_resources("high"))

    def test_conversation_turn(self):
        conversation = main.create_conversation(ConversationCreate(title="Tonight"), self.db, self.user)
        turn = main.send_message(
            conversation.id, MessageCreate(content="Congratulations, I got the job!"), self.db, self.user, self.services
        )
        self.assertEqual(turn.response.intent, "celebration")
        self.assertEqual(turn.companion_message.role, "companion")
        self.assertEqual(turn.companion_message.metadata["intent"], "celebration")
        detail = main.get_conversation(conversation.id, self.db, self.user)
        self.assertEqual(detail.message_count, 2)
        self.assertEqual(detail.messages[0].content, "Congratulations, I got the job!")

    def test_crisis_message_records_conversation_flag(self):
        conversation = main.create_conversation(ConversationCreate(), self.db, self.user)
        turn = main.send_message(
            conversation.id, MessageCreate(content="I want to kill myself"), self.db, self.user, self.services
        )
        self.assertEqual(turn.response.intent, "crisis_help")
        flags = main.get_safety_flags(30, self.db, self.user)
        self.assertEqual(flags[0]["conversation_id"], conversation.id)

    def test_listing_conversations_does_not_decrypt_messages(self):
        conversation = main.create_conversation(ConversationCreate(), self.db, self.user)
        stored = storage.get_conversation(self.db, self.user.id, conversation.id)
        for index in range(5):
            storage.append_message(self.db, stored, "user", f"message {index}")
        self.db.expire_all()
        cipher = get_cipher()
        with mock.patch.object(cipher, "decrypt_json", wraps=cipher.decrypt_json) as decrypt:
            summaries = main.list_conversations(False, self.db, self.user)
        self.assertEqual(summaries[0].message_count, 5)
        decrypt.assert_not_called()

    def test_archived_conversation_rejects_messages(self):
        conversation = main.create_conversation(ConversationCreate(), self.db, self.user)
        main.archive_conversation(conversation.id, self.db, self.user, self.services)
        with self.assertRaises(HTTPException) as ctx:
            main.send_message(conversation.id, MessageCreate(content="hello"), self.db, self.user, self.services)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(main.list_conversations(False, self.db, self.user), [])

    def test_preferences_patch_validates_choices(self):
        updated = main.update_preferences(PreferencesUpdate(communication_style="casual"), self.db, self.user)
        self.assertEqual(updated.communication_style, "casual")
        self.assertEqual(updated.response_length, "moderate")
        with self.assertRaises(HTTPException):
            main.update_preferences(PreferencesUpdate(response_length="epic"), self.db, self.user)

    def test_retention_period_must_be_positive(self):
        with self.assertRaises(ValidationError):
            PreferencesUpdate.model_validate({"boundary_settings": {"data_retention_period": -1}})
        self.create("I am so grateful and happy today, thank you")
        purged = main.purge_expired_data(self.db, self.user)
        self.assertEqual(purged["removed"]["entries"], 0)
        self.assertEqual(len(main.list_entries(None, 50, self.db, self.user)), 1)

    def test_unknown_feedback_type_rejected(self):
        with self.assertRaises(ValidationError):
            FeedbackCreate(type="meh")

    def test_feedback_updates_preferences(self):
        prefs = main.submit_feedback(FeedbackCreate(type="too_casual", rating=2), self.db, self.user)
        self.assertEqual(prefs.communication_style, "formal")
        self.assertEqual(main.get_preferences(self.db, self.user).communication_style, "formal")

    def test_greeting(self):
        greeting = main.get_greeting(self.db, self.user)["greeting"]
        self.assertTrue(greeting)

    def test_purge_and_delete_all(self):
        entry = storage.create_entry(self.db, self.user.id, "a very old entry")
        entry.created_at = datetime.utcnow() - timedelta(days=800)
        self.db.commit()
        self.create("I am so grateful and happy today, thank you")
        purged = main.purge_expired_data(self.db, self.user)
        self.assertEqual(purged["removed"]["entries"], 1)
        removed = main.delete_all_data(self.db, self.user, self.services)["removed"]
        self.assertEqual(removed["entries"], 1)
        self.assertEqual(main.list_entries(None, 50, self.db, self.user), [])

    def test_reanalyze_requires_dev_mode(self):
        with self.assertRaises(HTTPException) as ctx:
            main.reanalyze_entries(self.db, self.user, self.services)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_reanalyze_in_dev_mode(self):
        self.create("I am so grateful and happy today, thank you")
        original = main.settings
        main.settings = replace(original, dev_mode=True)
        try:
            result = main.reanalyze_entries(self.db, self.user, self.services)
        finally:
            main.settings = original
        self.assertEqual(result["reanalyzed"], 1)
        self.assertEqual(len(storage.list_analyses(self.db, self.user.id)), 2)


def test_http_auth_flow():
    testclient = pytest.importorskip("fastapi.testclient")
    email = f"{uuid.uuid4().hex}@example.com"
    with testclient.TestClient(main.app) as client:
        assert client.get("/health").json()["db"] == "ok"
        token = client.post("/auth/register", json={"email": email, "password": "pw123456"}).json()["access_token"]
        duplicate = client.post("/auth/register", json={"email": email, "password": "pw123456"})
        assert duplicate.status_code == 400

        login = client.post("/auth/login", data={"username": email, "password": "pw123456"})
        assert login.status_code == 200
        bad_login = client.post("/auth/login", data={"username": email, "password": "wrong"})
        assert bad_login.status_code == 400

        headers = {"Authorization": f"Bearer {token}"}
        created = client.post("/entries", json={"content": "I feel hopeless today, really hopeless"}, headers=headers)
        assert created.status_code == 200
        assert created.json()["risk"]["level"] in {"moderate", "high"}
        assert client.get("/entries", headers=headers).json()[0]["id"] == created.json()["id"]
        assert client.get("/entries").status_code == 401
        assert client.get("/meta").json()["llm_configured"] is False


if __name__ == "__main__":
    unittest.main()
