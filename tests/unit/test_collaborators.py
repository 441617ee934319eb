"""Unit tests for loading collaborator bundles from entry points."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from phasegate.core.collaborators import CollaboratorLoadError, Collaborators, load_collaborators

MODULE = textwrap.dedent(
    """
    from phasegate.core.collaborators import Collaborators
    from phasegate.core.consensus import ProviderRegistry, ProviderReview
    from phasegate.models.packets import VoteDecision


    class EchoAuthor:
        def compose(self, role, prompt):
            return f"{role.value}: {prompt[:20]}"


    class Approver:
        name = "openai"

        async def review(self, prompt, *, model, temperature):
            return ProviderReview(decision=VoteDecision.APPROVE, confidence=1.0)


    def build():
        return Collaborators(author=EchoAuthor(), reviewers=ProviderRegistry([Approver()]))


    def wrong_type():
        return {"author": None}


    def broken():
        raise RuntimeError("no api key")


    def bad_author():
        return Collaborators(author=object())


    NOT_CALLABLE = 3
    """
)


@pytest.fixture
def entry_module(tmp_path: Path, monkeypatch) -> str:
    """Write an importable collaborator module and return its name."""
    name = f"collab_{tmp_path.name}".replace("-", "_")
    (tmp_path / f"{name}.py").write_text(MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return name


class TestLoadCollaborators:
    def test_empty_entry_point(self):
        bundle = load_collaborators("")
        assert isinstance(bundle, Collaborators)
        assert bundle.author is None
        assert len(bundle.reviewers) == 0

    def test_loads_bundle(self, entry_module: str):
        bundle = load_collaborators(f"{entry_module}:build")
        assert bundle.reviewers.names() == ["openai"]
        assert type(bundle.author).__name__ == "EchoAuthor"

    @pytest.mark.parametrize("entry_point", ["no_colon", ":build", "module:"])
    def test_invalid_format(self, entry_point: str):
        with pytest.raises(CollaboratorLoadError, match="expected 'module:callable'"):
            load_collaborators(entry_point)

    def test_missing_module(self):
        with pytest.raises(CollaboratorLoadError, match="Cannot import"):
            load_collaborators("phasegate_missing_module_xyz:build")

    @pytest.mark.parametrize(
        ("attr", "message"),
        [
            ("NOT_CALLABLE", "is not a callable"),
            ("absent", "is not a callable"),
            ("broken", "raised: no api key"),
            ("wrong_type", "returned dict, expected Collaborators"),
            ("bad_author", "does not implement compose"),
        ],
    )
    def test_bad_factories(self, entry_module: str, attr: str, message: str):
        with pytest.raises(CollaboratorLoadError, match=message):
            load_collaborators(f"{entry_module}:{attr}")
