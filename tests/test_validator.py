"""
Tests for neurogen.assembly.validator — static blueprint safety scoring.

Covers:
- Clean blueprints score 1.0
- Restricted capabilities (declared and implied)
- Tick I/O, missing rationale, network manipulation
- Warnings are reported but cheap
- Caller-registered constraints
"""

from __future__ import annotations

import pytest

from neurogen.assembly.validator import BlueprintValidator, SafetyConstraint
from neurogen.blueprint import MessageHandler, NeuronType


@pytest.fixture()
def validator(validator_config) -> BlueprintValidator:
    return BlueprintValidator(validator_config)


class TestCleanBlueprint:
    def test_scores_full_marks(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint())
        assert result.safety_score == 1.0
        assert result.violations == ()
        assert result.warnings == ()
        assert result.is_valid

    def test_pure_function(self, validator, make_blueprint) -> None:
        bp = make_blueprint()
        assert validator.validate(bp) == validator.validate(bp)


class TestViolations:
    def test_restricted_capability_scores_point_four(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint(name="scan", capabilities=["network"]))
        assert result.violations == ("restricted-capability:network",)
        assert result.safety_score == pytest.approx(0.4)
        assert not result.is_valid

    def test_capability_implied_by_handler_logic(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            message_handlers=[
                MessageHandler(topic_pattern="user.hello", handling_logic="Download the page over HTTP"),
            ]
        )
        result = validator.validate(bp)
        assert "restricted-capability:network" in result.violations

    def test_file_access_implied(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            message_handlers=[
                MessageHandler(topic_pattern="user.hello", handling_logic="Append the greeting to a file on disk"),
            ]
        )
        assert "restricted-capability:file_access" in validator.validate(bp).violations

    def test_declared_and_implied_not_double_counted(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            capabilities=["network"],
            message_handlers=[MessageHandler(topic_pattern="a", handling_logic="call the web api endpoint")],
        )
        result = validator.validate(bp)
        assert result.violations.count("restricted-capability:network") == 1

    def test_allowed_list_is_configurable(self, make_blueprint) -> None:
        from neurogen.config import ValidatorConfig

        permissive = BlueprintValidator(
            ValidatorConfig(NEUROGEN_ALLOWED_CAPABILITIES="text_processing, network")
        )
        assert permissive.validate(make_blueprint(capabilities=["network"])).is_valid

    def test_unconditional_io_in_tick(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            has_autonomous_tick=True,
            neuron_type=NeuronType.HYBRID,
            tick_behavior_description="Fetch the weather from the internet",
        )
        result = validator.validate(bp)
        assert "unconditional-io-in-tick:network" in result.violations
        assert not any(w.startswith("conditional-io-in-tick") for w in result.warnings)

    def test_conditional_io_in_tick_is_a_warning(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            has_autonomous_tick=True,
            neuron_type=NeuronType.HYBRID,
            tick_behavior_description="Only when asked, write a summary file",
        )
        result = validator.validate(bp)
        assert "conditional-io-in-tick:file" in result.warnings
        assert not any(v.startswith("unconditional-io-in-tick") for v in result.violations)

    def test_missing_rationale(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint(rationale="   "))
        assert result.violations == ("missing-rationale",)
        assert result.safety_score == pytest.approx(0.7)

    @pytest.mark.parametrize(
        "logic, label",
        [
            ("Call RegisterNeuron for each new topic", "register_neuron"),
            ("unregister idle neurons", "unregister"),
            ("Use network.publish to reroute", "network_access"),
            ("Trigger self-assembly of helpers", "self_assembly"),
        ],
    )
    def test_network_manipulation(self, validator, make_blueprint, logic: str, label: str) -> None:
        bp = make_blueprint(message_handlers=[MessageHandler(topic_pattern="user.hello", handling_logic=logic)])
        assert f"network-manipulation:{label}" in validator.validate(bp).violations

    def test_score_floored_at_zero(self, validator, make_blueprint) -> None:
        bp = make_blueprint(rationale="", capabilities=["network", "file_access", "shell"])
        assert validator.validate(bp).safety_score == 0.0


class TestWarnings:
    def test_low_confidence(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint(confidence_score=0.3))
        assert result.warnings == ("low-confidence:0.30",)
        assert result.is_valid
        assert result.safety_score == pytest.approx(0.85)

    @pytest.mark.parametrize("pattern", ["*", "#", "**"])
    def test_catch_all_subscription(self, validator, make_blueprint, pattern: str) -> None:
        result = validator.validate(make_blueprint(subscribed_topics=[pattern]))
        assert f"catch-all-subscription:{pattern}" in result.warnings
        assert result.is_valid

    def test_invalid_topic_pattern(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint(subscribed_topics=["bad topic!"]))
        assert "invalid-topic-pattern:bad topic!" in result.warnings

    def test_missing_description(self, validator, make_blueprint) -> None:
        assert "missing-description" in validator.validate(make_blueprint(description="")).warnings

    def test_periodic_without_tick(self, validator, make_blueprint) -> None:
        result = validator.validate(make_blueprint(neuron_type=NeuronType.PERIODIC))
        assert "type-mismatch:periodic-without-tick" in result.warnings

    def test_warnings_alone_never_fall_below_default_floor(self, validator, make_blueprint) -> None:
        bp = make_blueprint(
            description="",
            confidence_score=0.1,
            neuron_type=NeuronType.PERIODIC,
            subscribed_topics=["*", "#", "bad topic!", "another bad!"],
        )
        result = validator.validate(bp)
        assert result.is_valid
        assert len(result.warnings) >= 5
        assert result.safety_score >= 0.5


class TestRegisteredConstraints:
    def test_critical_constraint_is_a_violation(self, validator, make_blueprint) -> None:
        validator.register_constraint(
            SafetyConstraint(
                name="no-greeters",
                description="Greeting neurons are handled elsewhere",
                check=lambda bp: "greet" not in bp.name,
                weight=0.3,
                critical=True,
            )
        )
        result = validator.validate(make_blueprint())
        assert result.violations == ("constraint:no-greeters",)
        assert result.safety_score == pytest.approx(0.7)
        assert validator.validate(make_blueprint(name="echo")).violations == ()

    def test_soft_constraint_is_a_warning(self, validator, make_blueprint) -> None:
        validator.register_constraint(
            SafetyConstraint(
                name="short-name",
                description="Names stay under five characters",
                check=lambda bp: len(bp.name) < 5,
                weight=0.1,
            )
        )
        result = validator.validate(make_blueprint())
        assert result.is_valid
        assert result.warnings == ("constraint:short-name",)
        assert result.safety_score == pytest.approx(0.9)

    def test_raising_check_counts_as_failed(self, validator, make_blueprint) -> None:
        def broken(bp) -> bool:
            raise KeyError("missing")

        validator.register_constraint(
            SafetyConstraint(name="broken", description="", check=broken, critical=True)
        )
        assert validator.validate(make_blueprint()).violations == ("constraint:broken",)

    def test_duplicate_name_refused(self, validator) -> None:
        constraint = SafetyConstraint(name="once", description="", check=lambda bp: True)
        validator.register_constraint(constraint)
        with pytest.raises(ValueError):
            validator.register_constraint(constraint)
        assert validator.constraints == (constraint,)
