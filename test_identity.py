import re

import pytest

from campus_cli.exceptions import AccountExistsError


def reset_token(outbox):
    return re.search(r"token=([\w-]+)", outbox.sent[-1]["body"]).group(1)


def test_create_and_authenticate(ctx):
    account_id = ctx.identity.create_account("Jane@Campus.edu", "Jane@1234")

    assert ctx.identity.find_account_by_email("jane@campus.edu") == account_id
    assert ctx.identity.authenticate("jane@campus.edu", "Jane@1234") == account_id
    assert ctx.identity.authenticate("jane@campus.edu", "wrong") is None


def test_duplicate_account_is_rejected(ctx):
    ctx.identity.create_account("jane@campus.edu", "Jane@1234")

    with pytest.raises(AccountExistsError):
        ctx.identity.create_account("JANE@campus.edu", "Other@5678")


def test_password_reset_round_trip(ctx, outbox):
    ctx.identity.create_account("jane@campus.edu", "Jane@1234")

    assert ctx.identity.send_password_reset("jane@campus.edu") is True
    token = reset_token(outbox)

    assert ctx.identity.complete_password_reset("jane@campus.edu", token, "NewPass#1")
    assert ctx.identity.authenticate("jane@campus.edu", "Jane@1234") is None
    assert ctx.identity.authenticate("jane@campus.edu", "NewPass#1") is not None
    # tokens are single use
    assert not ctx.identity.complete_password_reset("jane@campus.edu", token, "Again#2")


def test_reset_for_unknown_account_sends_nothing(ctx, outbox):
    assert ctx.identity.send_password_reset("nobody@campus.edu") is False
    assert outbox.sent == []
