from triad import db
from triad.models import Game
from triad.services import chat


def test_chat_only_during_discussion(human_table):
    t = human_table
    res = t.alice.post(f'/api/games/{t.id}/messages', json={'text': 'too early'})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'Chat is only active during discussion'


def test_chat_validation_and_spectators(human_table, flask_app):
    from conftest import signup

    t = human_table
    t.judge.post(f'/api/games/{t.id}/subject', json={'subject': 'Cats'})
    assert t.alice.post(f'/api/games/{t.id}/messages', json={'text': '   '}).status_code == 400
    assert t.alice.post(f'/api/games/{t.id}/messages', json={'text': 'x' * 501}).status_code == 400
    assert t.alice.post(f'/api/games/{t.id}/messages', json={'text': 42}).status_code == 400

    watcher = signup(flask_app, 'watcher')
    assert watcher.post(f'/api/games/{t.id}/messages', json={'text': 'hi'}).status_code == 403
    # but spectators can read the feed
    assert watcher.get(f'/api/games/{t.id}/messages').status_code == 200


def test_messages_are_ordered_and_paged(human_table):
    t = human_table
    t.judge.post(f'/api/games/{t.id}/subject', json={'subject': 'Cats'})
    sent = []
    for i in range(5):
        res = t.alice.post(f'/api/games/{t.id}/messages', json={'text': f'  msg {i} '})
        assert res.status_code == 201
        body = res.get_json()
        assert body['sender_username'] == 'alice'
        assert body['kind'] == 'user'
        assert body['round'] == 1
        sent.append(body)
    assert sent[0]['text'] == 'msg 0'

    last_two = t.bob.get(f'/api/games/{t.id}/messages?limit=2').get_json()
    assert [m['text'] for m in last_two] == ['msg 3', 'msg 4']

    after = t.bob.get(f"/api/games/{t.id}/messages?after={sent[2]['id']}").get_json()
    assert [m['text'] for m in after] == ['msg 3', 'msg 4']

    everything = t.bob.get(f'/api/games/{t.id}/messages').get_json()
    ids = [m['id'] for m in everything]
    assert ids == sorted(ids)
    assert everything[0]['kind'] == 'system'
    assert everything[0]['sender_username'] == 'System'


def test_transcript_covers_only_current_round(flask_app, human_table, oracle):
    t = human_table
    oracle.queue('{"accuracy_score": 50, "justification": "ok"}')
    t.judge.post(f'/api/games/{t.id}/subject', json={'subject': 'Cats'})
    t.alice.post(f'/api/games/{t.id}/messages', json={'text': 'round one talk'})
    t.alice.post(f'/api/games/{t.id}/discussion/end')
    t.judge.post(f'/api/games/{t.id}/answer', json={'answer': 'Meow'})

    t.judge.post(f'/api/games/{t.id}/subject', json={'subject': 'Dogs'})
    t.bob.post(f'/api/games/{t.id}/messages', json={'text': 'round two talk'})

    with flask_app.app_context():
        game = db.session.get(Game, t.id)
        assert chat.transcript(game) == 'bob: round two talk'
