from devmem.xml_parser import normalize_observation_type, parse_observer_output


def test_parse_observer_output_with_summary():
    payload = """
```xml
<observation>
  <type>bugfix</type>
  <title>Fixed token refresh race</title>
  <subtitle>Refresh now serialised</subtitle>
  <facts>
    <fact>Two refreshes could run at once</fact>
    <fact></fact>
  </facts>
  <narrative>The refresh handler now takes a lock before rotating tokens.</narrative>
  <concepts>
    <concept>bugfix</concept>
    <concept>gotcha</concept>
  </concepts>
  <files_read>
    <file>src/auth/session.py</file>
  </files_read>
  <files_modified>
    <file>src/auth/refresh.py</file>
  </files_modified>
</observation>
<summary>
  <request>Stop random logouts</request>
  <investigated>Token refresh flow</investigated>
  <learned>Refresh tokens are single use</learned>
  <completed>Refresh serialised</completed>
  <next_steps>Add a regression test</next_steps>
  <notes></notes>
</summary>
```
"""
    parsed = parse_observer_output(payload)
    assert len(parsed.observations) == 1
    obs = parsed.observations[0]
    assert obs.kind == "bugfix"
    assert obs.title == "Fixed token refresh race"
    assert obs.subtitle == "Refresh now serialised"
    assert obs.facts == ["Two refreshes could run at once"]
    assert obs.concepts == ["gotcha"]
    assert obs.files_read == ["src/auth/session.py"]
    assert obs.files_modified == ["src/auth/refresh.py"]
    assert parsed.summary is not None
    assert parsed.summary.request == "Stop random logouts"
    assert parsed.summary.next_steps == "Add a regression test"
    assert parsed.summary.notes is None


def test_unknown_type_becomes_change():
    parsed = parse_observer_output(
        "<observation><type>Mystery</type><title>Something</title></observation>"
    )
    assert parsed.observations[0].kind == "change"
    assert normalize_observation_type(" Decision ") == "decision"
    assert normalize_observation_type(None) == "change"


def test_observation_without_title_or_narrative_is_dropped():
    parsed = parse_observer_output("<observation><type>change</type></observation>")
    assert parsed.observations == []


def test_malformed_block_is_skipped():
    payload = (
        "<observation><title>Broken & unescaped</title></observation>"
        "<observation><title>Kept</title></observation>"
    )
    parsed = parse_observer_output(payload)
    assert [obs.title for obs in parsed.observations] == ["Kept"]


def test_empty_summary_is_none():
    parsed = parse_observer_output("<summary><request></request></summary>")
    assert parsed.summary is None


def test_last_summary_wins():
    payload = (
        "<summary><request>first</request></summary>"
        "<summary><request>second</request></summary>"
    )
    assert parse_observer_output(payload).summary.request == "second"
