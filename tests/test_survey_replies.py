# tests/test_survey_replies.py
import pytest

from engagement_crm.services.survey_replies import RatingReply, parse_rating_reply


@pytest.mark.parametrize(
    "reply_id, expected",
    [
        ("rate:7:5", RatingReply(meeting_id=7, score=5)),
        ("rate:7:1", RatingReply(meeting_id=7, score=1)),
        (" rate:12:3 ", RatingReply(meeting_id=12, score=3)),
        ("rate:7:0", None),
        ("rate:7:6", None),
        ("rate:abc:3", None),
        ("vote:7:3", None),
        ("rate:7", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_rating_reply(reply_id, expected):
    assert parse_rating_reply(reply_id) == expected
