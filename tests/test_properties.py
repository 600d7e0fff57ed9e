from pathlib import Path
from unittest.mock import MagicMock

from hypothesis import given
from hypothesis import strategies as st

from nabu.auth import AgentAuth, CredentialResolver
from nabu.batcher import PendingBatch
from nabu.git_wrapper import GitRepo
from nabu.push import PushGate, PushState
from nabu.source import ChangeEvent, ChangeKind

# Strategy: relative file names made of a few path components.
names_strategy = st.lists(
    st.lists(
        st.text(alphabet="abcxyz._-", min_size=1, max_size=6), min_size=1, max_size=3
    ).map(lambda parts: Path("/repo", *parts)),
    max_size=50,
)


@given(paths=names_strategy, kinds=st.lists(st.sampled_from(ChangeKind)))
def test_pending_batch_holds_distinct_paths(
    paths: list[Path], kinds: list[ChangeKind]
) -> None:
    """
    Property: A batch contains each observed path exactly once, whatever the
    number of events per path, and draining leaves it empty.
    """
    batch = PendingBatch()
    for i, path in enumerate(paths):
        kind = kinds[i % len(kinds)] if kinds else ChangeKind.MODIFIED
        batch.add(ChangeEvent(path, kind), float(i))

    assert batch.paths == frozenset(paths)
    assert batch.drain() == frozenset(paths)
    assert len(batch) == 0
    assert batch.last_event_at is None


@given(triggers=st.integers(min_value=1, max_value=20), succeed=st.booleans())
def test_push_state_transitions_once(triggers: int, succeed: bool) -> None:
    """
    Property: However many shutdown triggers fire, exactly one push is performed
    and the state never changes after it becomes terminal.
    """
    agent = MagicMock()
    agent.is_reachable.return_value = succeed
    agent.socket_path.return_value = "/run/agent.sock"
    repo = MagicMock(spec=GitRepo)
    repo.path = Path("/repo")
    repo.current_branch.return_value = "main"
    repo.upstream.return_value = None
    repo.remote_url.return_value = "/srv/remote.git"
    gate = PushGate(repo, CredentialResolver(AgentAuth(), agent=agent))

    results = [gate.push() for _ in range(triggers)]

    assert sum(r.performed for r in results) == 1
    expected = PushState.SUCCEEDED if succeed else PushState.FAILED
    assert {r.state for r in results} == {expected}
    assert repo.push.call_count == (1 if succeed else 0)
