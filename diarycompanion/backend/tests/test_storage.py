import json
import unittest
from datetime import date, datetime, timedelta

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from diarycompanion.backend.app import storage
from diarycompanion.backend.app.database import (
    Base,
    DiaryEntry,
    EmotionalAnalysisRecord,
    User,
    configure_encryption,
)
from diarycompanion.backend.app.emotion_analyzer import EmotionAnalyzer
from diarycompanion.backend.app.encryption import EncryptionService
from diarycompanion.backend.app.pattern_engine import PatternAggregator, generate_insights
from diarycompanion.backend.app.schemas import CompanionPreferences, FeedbackRecord, SafetyFlagRecord


class StorageTests(unittest.TestCase):
    def setUp(self):
        configure_encryption(EncryptionService("storage-tests", iterations=1000))
        self.engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine)()
        user = User(email="reader@example.com", hashed_password="x")
        self.db.add(user)
        self.db.commit()
        self.user_id = user.id
        self.analyzer = EmotionAnalyzer()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def add_analyzed_entry(self, content, entry_date=None):
        entry = storage.create_entry(self.db, self.user_id, content, entry_date)
        analysis = self.analyzer.analyze_entry(entry.id, content, entry.entry_date)
        return entry, storage.store_analysis(self.db, self.user_id, analysis)

    def test_entry_content_is_encrypted_at_rest(self):
        entry = storage.create_entry(self.db, self.user_id, "A private thought about my day")
        raw = self.db.execute(text("SELECT content FROM diary_entries WHERE id = :id"), {"id": entry.id}).scalar()
        self.assertNotIn("private thought", raw)
        self.assertIn("salt", json.loads(raw))
        self.db.expire_all()
        self.assertEqual(storage.get_entry(self.db, self.user_id, entry.id).content, "A private thought about my day")
        self.assertEqual(entry.word_count, 6)

    def test_unreadable_payload_reads_as_none(self):
        entry = storage.create_entry(self.db, self.user_id, "secret")
        self.db.execute(text("UPDATE diary_entries SET content = 'garbage' WHERE id = :id"), {"id": entry.id})
        self.db.commit()
        self.db.expire_all()
        self.assertIsNone(storage.get_entry(self.db, self.user_id, entry.id).content)

    def test_update_and_delete_entry(self):
        entry = storage.create_entry(self.db, self.user_id, "first draft")
        storage.update_entry(self.db, entry, "second draft with more words")
        self.assertEqual(entry.word_count, 5)
        storage.delete_entry(self.db, entry)
        self.assertIsNone(storage.get_entry(self.db, self.user_id, entry.id))

    def test_entries_scoped_to_user(self):
        other = User(email="other@example.com", hashed_password="x")
        self.db.add(other)
        self.db.commit()
        entry = storage.create_entry(self.db, other.id, "not yours")
        self.assertIsNone(storage.get_entry(self.db, self.user_id, entry.id))
        self.assertEqual(storage.list_entries(self.db, self.user_id), [])

    def test_analysis_round_trip_and_latest(self):
        entry, stored = self.add_analyzed_entry("I am so grateful and happy today, thank you")
        self.assertIsNotNone(stored.id)
        loaded = storage.latest_analysis(self.db, entry.id)
        self.assertEqual(loaded.primary_emotions, stored.primary_emotions)
        self.assertEqual(loaded.sentiment, stored.sentiment)

        storage.update_entry(self.db, entry, "Now I feel sad and lonely instead")
        newer = self.analyzer.analyze_entry(entry.id, entry.content)
        storage.store_analysis(self.db, self.user_id, newer)
        self.assertEqual(len(storage.list_analyses(self.db, self.user_id)), 2)
        current = storage.current_analyses(self.db, self.user_id)
        self.assertEqual(len(current), 1)
        self.assertLess(current[0].sentiment.compound, 0)

    def test_deleting_entry_removes_its_analyses(self):
        entry, _ = self.add_analyzed_entry("A calm and peaceful evening walk")
        storage.delete_entry(self.db, entry)
        self.assertEqual(self.db.query(EmotionalAnalysisRecord).count(), 0)

    def test_patterns_and_insights_are_replaced_wholesale(self):
        for day, content in enumerate(["I feel sad about work and my boss", "Still sad, the meeting at work was rough"]):
            self.add_analyzed_entry(content, date(2024, 5, 1) + timedelta(days=day))
        analyses = storage.current_analyses(self.db, self.user_id)
        patterns = PatternAggregator().aggregate(analyses, self.user_id)
        storage.replace_patterns(self.db, patterns)
        storage.replace_patterns(self.db, PatternAggregator().aggregate(analyses, self.user_id))
        latest = storage.latest_patterns(self.db, self.user_id)
        self.assertEqual(latest.analysis_count, 2)
        self.assertEqual(latest.triggers[0].trigger, "work")

        insights = generate_insights(latest, self.user_id, "weekly")
        storage.store_insights(self.db, insights)
        storage.store_insights(self.db, insights)
        self.assertEqual(storage.latest_insights(self.db, self.user_id, "weekly").summary, insights.summary)
        self.assertIsNone(storage.latest_insights(self.db, self.user_id, "monthly"))

    def test_preferences_get_or_create(self):
        prefs = storage.get_preferences(self.db, self.user_id)
        self.assertEqual(prefs.communication_style, "warm")
        storage.save_preferences(self.db, self.user_id, CompanionPreferences(communication_style="direct"))
        self.assertEqual(storage.get_preferences(self.db, self.user_id).communication_style, "direct")

    def test_conversation_history_is_ordered_and_limited(self):
        conversation = storage.create_conversation(self.db, self.user_id)
        self.assertTrue(conversation.title.startswith("Conversation"))
        for index in range(12):
            storage.append_message(self.db, conversation, "user", f"message {index}", {"n": index})
        history = storage.conversation_history(self.db, conversation.id)
        self.assertEqual(len(history), 10)
        self.assertEqual(history[0].content, "message 2")
        self.assertEqual(history[-1].content, "message 11")
        self.assertIsNotNone(conversation.last_message_at)

    def test_archived_conversations_hidden_by_default(self):
        conversation = storage.create_conversation(self.db, self.user_id, "Evening check-in")
        storage.archive_conversation(self.db, conversation)
        self.assertEqual(storage.list_conversations(self.db, self.user_id), [])
        self.assertEqual(len(storage.list_conversations(self.db, self.user_id, include_archived=True)), 1)

    def test_safety_flags_merge_duplicate_types(self):
        flags = [
            SafetyFlagRecord(type="suicidal_ideation", severity="critical", indicators=["a"]),
            SafetyFlagRecord(type="suicidal_ideation", severity="critical", indicators=["b"]),
            SafetyFlagRecord(type="self_harm_risk", severity="critical", indicators=["c"]),
        ]
        rows = storage.record_safety_flags(self.db, self.user_id, flags, source="entry", entry_id=3)
        self.assertEqual(len(rows), 2)
        self.assertEqual(json.loads(rows[0].indicators_json), ["a", "b"])
        self.assertEqual(len(storage.list_safety_flags(self.db, self.user_id)), 2)

    def test_feedback_round_trip(self):
        storage.record_feedback(self.db, self.user_id, FeedbackRecord(type="helpful", comment="kind words", categories=["tone"]))
        items = storage.list_feedback(self.db, self.user_id)
        self.assertEqual(items[0].comment, "kind words")
        self.assertEqual(items[0].categories, ["tone"])

    def test_purge_expired_respects_retention(self):
        old = storage.create_entry(self.db, self.user_id, "an old entry")
        old.created_at = datetime.utcnow() - timedelta(days=400)
        self.db.commit()
        storage.create_entry(self.db, self.user_id, "a recent entry")
        removed = storage.purge_expired(self.db, self.user_id, retention_days=365)
        self.assertEqual(removed["entries"], 1)
        self.assertEqual(self.db.query(DiaryEntry).count(), 1)

    def test_purge_expired_refuses_non_positive_retention(self):
        storage.create_entry(self.db, self.user_id, "written just now")
        for days in (0, -1):
            with self.assertRaises(ValueError):
                storage.purge_expired(self.db, self.user_id, retention_days=days)
        self.assertEqual(self.db.query(DiaryEntry).count(), 1)

    def test_message_count_without_loading_messages(self):
        conversation = storage.create_conversation(self.db, self.user_id)
        for index in range(3):
            storage.append_message(self.db, conversation, "user", f"note {index}")
        self.assertEqual(storage.count_messages(self.db, conversation.id), 3)
        self.assertEqual(storage.count_messages(self.db, "missing"), 0)

    def test_new_preferences_seed_support_types(self):
        prefs = storage.get_preferences(self.db, self.user_id)
        self.assertEqual(
            [item.type for item in prefs.support_preferences],
            ["emotional_support", "practical_guidance", "celebration", "reflection_prompt"],
        )

    def test_delete_user_data_removes_everything(self):
        self.add_analyzed_entry("I am so grateful and happy today, thank you")
        conversation = storage.create_conversation(self.db, self.user_id)
        storage.append_message(self.db, conversation, "user", "hi")
        storage.get_preferences(self.db, self.user_id)
        counts = storage.delete_user_data(self.db, self.user_id)
        self.assertEqual(counts["entries"], 1)
        self.assertEqual(counts["analyses"], 1)
        self.assertEqual(counts["conversations"], 1)
        self.assertEqual(storage.list_entries(self.db, self.user_id), [])
        self.assertEqual(storage.list_analyses(self.db, self.user_id), [])


if __name__ == "__main__":
    unittest.main()
