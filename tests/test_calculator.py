import pytest

from calculator import (
    Aggregator,
    BindingStore,
    CalculationInstance,
    CalculationSession,
    EvaluationError,
    InstanceNotFound,
    NotReady,
    Ready,
    UnknownVariable,
    describe_result,
    format_number,
)
from catalog import ProductTemplate, Variable


# ---------------------------------------------------------------------------
# Binding store
# ---------------------------------------------------------------------------


def test_set_value_parses_and_overwrites():
    store = BindingStore()
    assert store.set_value("A", "2") is True
    assert store.set_value("A", " 2.5 ") is True
    assert store.get("A") == 2.5


def test_set_value_ignores_invalid_input():
    store = BindingStore()
    store.set_value("A", "4")
    for raw in ("abc", "1e", "-", "nan", "inf", "1.2.3", 10**400, "1e400"):
        assert store.set_value("A", raw) is False
    assert store.get("A") == 4


def test_trailing_decimal_point_is_not_an_error():
    store = BindingStore()
    store.set_value("A", "1.")
    assert store.get("A") == 1.0


def test_empty_input_removes_binding():
    store = BindingStore()
    store.set_value("A", "0")
    assert "A" in store
    assert store.set_value("A", "") is True
    assert "A" not in store
    assert store.set_value("A", "") is False


def test_zero_is_distinct_from_not_entered():
    store = BindingStore()
    store.set_value("A", "0")
    assert store.get("A") == 0
    assert len(store) == 1


def test_clear_and_retain():
    store = BindingStore()
    store.set_value("A", "1")
    store.set_value("B", "2")
    assert store.retain(["A"]) is True
    assert store.as_dict() == {"A": 1.0}
    assert store.clear() is True
    assert len(store) == 0


# ---------------------------------------------------------------------------
# Calculation instance
# ---------------------------------------------------------------------------


def test_scenario_width_times_height(area_template):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    instance.set_value("B", "3")
    instance.set_quantity("4")
    assert instance.unit_result == Ready(6.0)
    assert instance.total == 24


def test_missing_variable_is_not_ready(area_template):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    assert instance.unit_result == NotReady()
    assert instance.total == 0


def test_removing_a_value_returns_to_not_ready(area_template):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    instance.set_value("B", "3")
    instance.set_value("B", "")
    assert instance.unit_result == NotReady()


def test_division_by_zero_is_error():
    template = ProductTemplate(id="t", name="Div", formula="A/0", variables=(Variable("A", "A"),))
    instance = CalculationInstance(template)
    instance.set_value("A", "5")
    assert isinstance(instance.unit_result, EvaluationError)
    assert instance.total == 0


def test_pi_scenario():
    template = ProductTemplate(id="t", name="Round", formula="width*PI", variables=(Variable("width", "Width"),))
    instance = CalculationInstance(template)
    instance.set_value("width", "10")
    assert instance.unit_result.value == pytest.approx(31.4)


def test_zero_variable_template_stays_not_ready():
    template = ProductTemplate(id="t", name="Fixed", formula="5")
    instance = CalculationInstance(template)
    instance.recompute()
    assert instance.unit_result == NotReady()


def test_unknown_variable_is_rejected(area_template):
    instance = CalculationInstance(area_template)
    with pytest.raises(UnknownVariable):
        instance.set_value("C", "1")


def test_full_bindings_are_never_not_ready(area_template):
    broken = ProductTemplate(id="b", name="Broken", formula="A*", variables=area_template.variables)
    for template in (area_template, broken):
        instance = CalculationInstance(template)
        instance.set_value("A", "1")
        instance.set_value("B", "1")
        assert not isinstance(instance.unit_result, NotReady)


@pytest.mark.parametrize("quantity", ["0", "1", "2.5", "100"])
def test_total_is_quantity_times_unit_result(area_template, quantity):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    instance.set_value("B", "3")
    instance.set_quantity(quantity)
    assert instance.total == pytest.approx(6 * float(quantity))


def test_invalid_quantity_is_ignored(area_template):
    instance = CalculationInstance(area_template)
    instance.set_quantity("3")
    for raw in ("", "abc", "-1", "inf", 10**400):
        assert instance.set_quantity(raw) is False
    assert instance.quantity == 3


def test_rebind_same_template_keeps_declared_bindings(area_template):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    instance.set_value("B", "3")
    changed = ProductTemplate(id=area_template.id, name="Duct", formula="A+1", variables=(Variable("A", "Width"),))
    instance.rebind(changed)
    assert instance.bindings.as_dict() == {"A": 2.0}
    assert instance.unit_result == Ready(3.0)


def test_rebind_other_template_clears_bindings(area_template, flat_template):
    instance = CalculationInstance(area_template)
    instance.set_value("A", "2")
    instance.rebind(flat_template)
    assert len(instance.bindings) == 0
    assert instance.unit_result == NotReady()


def test_subscribe_receives_current_output(area_template):
    instance = CalculationInstance(area_template)
    seen = []
    instance.subscribe(lambda iid, snap: seen.append((iid, snap)))
    assert seen == [(instance.instance_id, instance.snapshot())]


def test_recompute_is_idempotent(area_template):
    instance = CalculationInstance(area_template)
    aggregator = Aggregator()
    instance.subscribe(aggregator.upsert)
    instance.set_value("A", "2")
    instance.set_value("B", "3")
    count = aggregator.notifications
    assert instance.recompute() is False
    assert instance.recompute() is False
    instance.set_value("A", "2")
    instance.set_value("A", "abc")
    assert aggregator.notifications == count


def test_unsubscribe_stops_notifications(area_template):
    instance = CalculationInstance(area_template)
    seen = []
    unsubscribe = instance.subscribe(lambda iid, snap: seen.append(snap))
    unsubscribe()
    instance.set_value("A", "1")
    assert len(seen) == 1


# ---------------------------------------------------------------------------
# Session & aggregation
# ---------------------------------------------------------------------------


def _filled_session(area_template, flat_template):
    session = CalculationSession()
    first = session.add(area_template)
    first.set_value("A", "2")
    first.set_value("B", "3")
    first.set_quantity("4")
    second = session.add(flat_template)
    second.set_value("A", "10")
    return session, first, second


def test_grand_total_and_removal(area_template, flat_template):
    session, first, second = _filled_session(area_template, flat_template)
    assert session.grand_total() == 34
    session.remove(first.instance_id)
    assert session.grand_total() == 10
    assert session.aggregator.get(first.instance_id) is None


def test_removal_subtracts_exactly_the_instance_total(area_template, flat_template):
    session, first, second = _filled_session(area_template, flat_template)
    before = session.grand_total()
    total = second.total
    session.remove(second.instance_id)
    assert before - session.grand_total() == pytest.approx(total)


def test_removed_instance_no_longer_reports(area_template, flat_template):
    session, first, second = _filled_session(area_template, flat_template)
    session.remove(first.instance_id)
    first.set_value("A", "100")
    assert session.grand_total() == 10


def test_remove_unknown_instance(area_template):
    session = CalculationSession()
    with pytest.raises(InstanceNotFound):
        session.remove("missing")


def test_errors_contribute_zero(area_template, flat_template):
    session, first, second = _filled_session(area_template, flat_template)
    broken = ProductTemplate(id=area_template.id, name="Duct", formula="A/0", variables=area_template.variables)
    assert session.refresh_template(broken) == 1
    assert isinstance(first.unit_result, EvaluationError)
    assert session.grand_total() == 10


def test_line_items(area_template, flat_template):
    session, first, second = _filled_session(area_template, flat_template)
    session.add(area_template)
    items = session.line_items()

    assert [item.index for item in items] == [1, 2, 3, None]
    assert items[0].template_name == "Rectangular duct"
    assert items[0].bound_variables == "Width: 2, Height: 3"
    assert items[0].quantity == 4
    assert items[0].unit_result == Ready(6.0)
    assert items[0].total == 24
    assert items[2].unit_result == NotReady()
    assert items[2].total == 0
    assert items[-1].is_grand_total
    assert items[-1].total == 34


def test_default_quantity_comes_from_session(area_template):
    session = CalculationSession(default_quantity=2)
    assert session.add(area_template).quantity == 2


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        (24, "24"),
        (31.400000000000002, "31.4"),
        (1234.567, "1,234.57"),
        (0.005, "0.01"),
        (-0.001, "0"),
        (1000000, "1,000,000"),
    ],
)
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_describe_result():
    assert describe_result(NotReady()) == "..."
    assert describe_result(EvaluationError("boom")) == "Error"
    assert describe_result(Ready(6.0)) == "6"
