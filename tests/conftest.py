"""Shared fixtures for resultcheck tests."""

import asyncio
import json

import pytest
import requests

from resultcheck.config import Settings
from resultcheck.subjects import IdType, Session, Subject


def _make_response(status=200, body=None, headers=None, text=None):
    r = requests.Response()
    r.status_code = status
    r.headers.update({"Content-Type": "application/json"})
    r.headers.update(headers or {})
    if text is not None:
        r._content = text.encode()
    else:
        r._content = json.dumps(body if body is not None else {}).encode()
    r.url = "https://results.example.com/v2/results/patient"
    return r


def _make_subject(uin="S1234567D", nationality="", passport="", id_type=None, data=None, **other):
    if id_type is None:
        id_type = IdType.UIN if uin else IdType.PASSPORT
    return Subject(
        id_type=id_type,
        uin=uin,
        nationality=nationality,
        passport=passport,
        other_info=dict(other),
        data=data,
    )


def _make_session(count=0, **kwargs):
    session = Session()
    for i in range(count):
        session.add_subject(_make_subject(uin=f"S{i:07d}A", **kwargs))
    return session


class FakeRemote:
    """
    Async stand-in for ResultsClient.execute.

    Outcomes are looked up by the query's uin param: a dict is returned,
    an exception is raised, anything missing returns an empty result list.
    """

    def __init__(self, outcomes=None, delay=0):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls = []

    async def __call__(self, query):
        uin = query.as_dict()["uin"]
        self.calls.append(uin)
        await asyncio.sleep(self.delay)
        outcome = self.outcomes.get(uin, {"results": []})
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def settings():
    return Settings(
        base_url="https://results.example.com/v2",
        api_key="test-key-12345",
        timeout_sec=5,
        concurrency_limit=4,
    )


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def make_subject():
    return _make_subject


@pytest.fixture
def make_session():
    return _make_session


@pytest.fixture
def fake_remote():
    return FakeRemote
