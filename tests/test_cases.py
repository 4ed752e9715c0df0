import pytest
from hyperframe.frame import (DataFrame, GoAwayFrame, HeadersFrame, PingFrame, RstStreamFrame,
                              SettingsFrame)

import h2_conformance_framework.framing_tests as framing_tests
import h2_conformance_framework.http_exchange_tests  # noqa: F401
from conftest import CLOSE, ScriptedSession
from h2_conformance_framework.classifier import CLOSED_BEFORE_MATCH, NO_MATCH_BEFORE_DEADLINE
from h2_conformance_framework.frames import ErrorCode, GoAway, StreamReset
from h2_conformance_framework.registry import registry
from h2_conformance_framework.results import CaseStatus
from h2_conformance_framework.runner import CaseRunner
from h2_conformance_framework.session import DEFAULT_MAX_FRAME_SIZE


def build(case_id, session):
    case = registry.find(case_id)
    case.build(session)
    return session.writes


@pytest.fixture
def session(clock):
    return ScriptedSession(clock, scheme='https', authority='sut.test:8443')


def headers_of(writes):
    kind, stream_id, fields, end_stream, end_headers = writes[0]
    assert kind == 'HEADERS'
    return fields


def test_oversized_data_frame_skips_settings_wait(clock):
    session = ScriptedSession(clock, peer_max_frame_size=2 ** 24 - 1)
    writes = build('4.2/1', session)

    assert registry.find('4.2/1').settings_exchange is False
    assert writes[0] == ('SETTINGS', {})
    assert writes[1][:2] == ('HEADERS', 1)
    assert (':method', 'GET') in writes[1][2]
    assert writes[1][3] is False
    assert writes[2][:2] == ('DATA', 1)
    assert len(writes[2][2]) == DEFAULT_MAX_FRAME_SIZE + 1


def test_invalid_header_block_is_written_raw(session):
    writes = build('4.3/1', session)

    assert writes == [('RAW', framing_tests.INVALID_HEADER_BLOCK)]
    block = framing_tests.INVALID_HEADER_BLOCK
    assert int.from_bytes(block[:3], 'big') == 20
    assert block[3] == 0x1
    assert len(block) == 9 + 20


def test_request_headers_follow_session(session):
    assert framing_tests.request_headers(session) == [
        (':method', 'GET'),
        (':scheme', 'https'),
        (':path', '/'),
        (':authority', 'sut.test:8443'),
    ]


@pytest.mark.parametrize('case_id, field', [
    ('8.1.2/1', ('X-TEST', 'test')),
    ('8.1.2.1/1', (':status', '200')),
    ('8.1.2.1/2', (':test', 'test')),
    ('8.1.2.2/1', ('connection', 'keep-alive')),
    ('8.1.2.2/2', ('te', 'trailers, deflate')),
])
def test_malformed_field_is_sent(session, case_id, field):
    writes = build(case_id, session)

    assert len(writes) == 1
    assert field in headers_of(writes)
    assert writes[0][3] is True


def test_pseudo_header_after_regular_field(session):
    fields = headers_of(build('8.1.2.1/3', session))

    assert fields[0] == ('x-test', 'test')
    assert [name for name, _ in fields[1:]] == [':method', ':scheme', ':path', ':authority']


def test_missing_path(session):
    fields = headers_of(build('8.1.2.3/1', session))

    assert ':path' not in [name for name, _ in fields]
    assert (':method', 'GET') in fields


def test_content_length_mismatch(session):
    writes = build('8.1.2.6/1', session)

    assert ('content-length', '1') in headers_of(writes)
    assert writes[0][3] is False
    assert writes[1] == ('DATA', 1, b'test', True)


def test_every_case_expects_an_error_signal():
    for case in registry.root.iter_cases():
        assert case.expectations
        assert all(e.signal in (StreamReset, GoAway) for e in case.expectations)
        assert case.requirement


def run_against(server, case_id, timeout=1.0):
    return CaseRunner(server.run_config(timeout=timeout)).run_case(registry.find(case_id))


def test_goaway_frame_size_error_passes(fake_server):
    def on_frame(frame):
        if isinstance(frame, DataFrame):
            return GoAwayFrame(0, last_stream_id=1,
                               error_code=ErrorCode.FRAME_SIZE_ERROR).serialize()
        return None

    # A huge advertised limit does not change the frame that is sent
    server = fake_server(on_frame, settings={SettingsFrame.MAX_FRAME_SIZE: 2 ** 24 - 1})
    result = run_against(server, '4.2/1')

    assert result.status == CaseStatus.PASSED
    assert result.matched_frame.startswith("GOAWAY")
    data = next(f for f in server.received if isinstance(f, DataFrame))
    assert len(data.data) == DEFAULT_MAX_FRAME_SIZE + 1


def test_goaway_compression_error_passes(fake_server):
    def on_frame(frame):
        if isinstance(frame, HeadersFrame):
            return GoAwayFrame(0, last_stream_id=0,
                               error_code=ErrorCode.COMPRESSION_ERROR).serialize()
        return None

    server = fake_server(on_frame)
    result = run_against(server, '4.3/1')

    assert result.status == CaseStatus.PASSED
    assert result.matched_frame == "GOAWAY(last_stream=0, COMPRESSION_ERROR)"


def test_silent_close_fails(fake_server):
    server = fake_server(lambda frame: CLOSE)
    result = run_against(server, '4.3/1')

    assert result.status == CaseStatus.FAILED
    assert result.diagnostic == CLOSED_BEFORE_MATCH


def test_ping_only_fails_at_deadline(fake_server):
    def on_frame(frame):
        if isinstance(frame, HeadersFrame):
            return PingFrame(0, opaque_data=b'keepaliv').serialize()
        return None

    server = fake_server(on_frame)
    result = run_against(server, '8.1.2/1', timeout=0.3)

    assert result.status == CaseStatus.FAILED
    assert result.diagnostic.startswith(NO_MATCH_BEFORE_DEADLINE)
    assert result.duration < 1.5


def test_settings_then_stream_reset_passes(fake_server):
    def on_frame(frame):
        if isinstance(frame, HeadersFrame):
            return (SettingsFrame(0).serialize()
                    + RstStreamFrame(frame.stream_id,
                                     error_code=ErrorCode.PROTOCOL_ERROR).serialize())
        return None

    server = fake_server(on_frame)
    result = run_against(server, '8.1.2.1/1')

    assert result.status == CaseStatus.PASSED
    assert result.matched_frame.startswith("RST_STREAM")


def test_each_case_opens_its_own_connection(fake_server):
    def on_frame(frame):
        if isinstance(frame, HeadersFrame):
            return RstStreamFrame(frame.stream_id,
                                  error_code=ErrorCode.PROTOCOL_ERROR).serialize()
        return None

    server = fake_server(on_frame)
    first = run_against(server, '8.1.2.2/1')
    second = run_against(server, '8.1.2.2/2')

    assert first.passed and second.passed
    assert server.connections == 2
    assert [f.stream_id for f in server.received if isinstance(f, HeadersFrame)] == [1, 1]
