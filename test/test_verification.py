"""Tests for the reaction force verification command."""

import pytest

from multibody.verification import VerificationConfig, main, run_reaction_force_verification


@pytest.mark.parametrize("seed", [0, 5, 17])
def test_passes_for_seed(seed):
    results = run_reaction_force_verification(VerificationConfig(seed=seed))
    assert results['passed']
    assert set(results['twin_motion']) == {'b1', 'b2', 't1', 't2'}
    assert max(results['free_reaction'].values()) < 1e-10


def test_main_reports(capsys):
    assert main(VerificationConfig()) is True
    out = capsys.readouterr().out
    assert "Mobilizer Reaction Force Verification" in out
    assert "PASSED" in out


def test_custom_loads():
    config = VerificationConfig(seed=3, mass=0.7, gravity=(0.0, 0.0, -9.81), torque=(0.0, 2.0, 0.0))
    assert run_reaction_force_verification(config)['passed']
