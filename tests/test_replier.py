"""Answering replies on the account's own posts."""
from conftest import NOW, FakeThreads, make_generator
from threadloop.history import HistoryStore
from threadloop.replier import run_replies


def _client():
    return FakeThreads(
        username="builder",
        threads=[{"id": "t1", "text": "Our new kitchen island"}, {"id": "t2", "text": "Quiet one"}],
        replies={
            "t1": [
                {"id": "r1", "text": "Looks great, how big is it?", "username": "friend"},
                {"id": "r2", "text": "Thanks everyone!", "username": "builder"},
                {"id": "r3", "text": "ok", "username": "someone"},
            ],
            "t2": [{"id": "r4", "text": "Love the windows here", "username": "neighbor"}],
        },
    )


def test_answers_new_replies(data_dir):
    client = _client()
    store = HistoryStore(data_dir=data_dir)
    generator = make_generator("About two meters, and worth it.")

    result = run_replies(client, store, generator, now=NOW)

    assert [r.replied_to for r in result.replied] == ["r1", "r4"]
    assert [p["reply_to_id"] for p in client.published] == ["r1", "r4"]
    record = store.load()[0]
    assert record.category == "reply"
    assert record.topic_key == "reply:r1"
    assert record.post_id == "post-1"
    assert "Original post: Our new kitchen island" in generator.client.messages.prompts[0]["user"]


def test_already_answered_replies_are_skipped(data_dir):
    store = HistoryStore(data_dir=data_dir)
    run_replies(_client(), store, make_generator("Thanks!"), now=NOW)

    client = _client()
    result = run_replies(client, store, make_generator("Thanks!"), now=NOW)
    assert result.replied == []
    assert client.published == []


def test_max_replies_and_dry_run(data_dir):
    client = _client()
    store = HistoryStore(data_dir=data_dir)
    result = run_replies(client, store, make_generator("Thanks!"), max_replies=1, dry_run=True, now=NOW)

    assert len(result.replied) == 1
    assert result.replied[0].post_id == "dry-run"
    assert client.published == []
