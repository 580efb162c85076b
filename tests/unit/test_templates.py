"""Template versioning and validation."""

import pytest

from tenderflow.contracts import StepBlueprint
from tenderflow.errors import InvalidStateError, NotFoundError, TemplateValidationError
from tenderflow.templates import TemplateService

STEPS = [
    {"name": "Manager", "order": 1, "approver_ids": ["U1"]},
    {"name": "Finance", "order": 2, "approver_role": "FINANCE"},
]


@pytest.mark.asyncio
async def test_create_sorts_and_validates_steps(repo, clock):
    service = TemplateService(repo, clock=clock)
    template = await service.create_template(
        "Purchase order", "purchase_order", list(reversed(STEPS))
    )
    assert [s.order for s in template.steps] == [1, 2]
    assert template.version == 1 and template.active
    assert template.created_at == clock.now

    with pytest.raises(TemplateValidationError):
        await service.create_template("Bad", "purchase_order", [STEPS[0], STEPS[0]])
    with pytest.raises(TemplateValidationError):
        await service.create_template("Bad", "purchase_order", [{"order": 1}])


@pytest.mark.asyncio
async def test_update_without_instances_is_in_place(engine):
    template = await engine.templates.create_template(
        "Purchase order", "purchase_order", STEPS
    )
    updated = await engine.templates.update_template(
        template.id, description="Two-step approval"
    )
    assert updated.id == template.id
    assert updated.version == 1
    assert (await engine.templates.get_template(template.id)).description == (
        "Two-step approval"
    )


@pytest.mark.asyncio
async def test_update_with_running_instance_creates_new_version(engine):
    template = await engine.templates.create_template(
        "Purchase order", "purchase_order", STEPS
    )
    instance = await engine.start_workflow(template.id, "purchase_order", "PO-1", "U9")

    successor = await engine.templates.update_template(
        template.id, steps=[StepBlueprint(name="CFO", order=1, approver_ids=["M1"])]
    )

    assert successor.id != template.id
    assert successor.version == 2
    assert successor.active
    assert [s.name for s in successor.steps] == ["CFO"]
    old = await engine.templates.get_template(template.id)
    assert not old.active
    assert [s.name for s in old.steps] == ["Manager", "Finance"]

    # the running instance keeps its original blueprint
    instance = await engine.get_instance(instance.id)
    assert instance.template_version == 1
    assert [s.name for s in await engine.get_steps(instance.id)] == ["Manager", "Finance"]

    active = await engine.templates.list_templates()
    assert [t.id for t in active] == [successor.id]

    with pytest.raises(InvalidStateError):
        await engine.templates.update_template(template.id, description="late edit")


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields_and_bad_steps(engine):
    template = await engine.templates.create_template(
        "Purchase order", "purchase_order", STEPS
    )
    with pytest.raises(TemplateValidationError):
        await engine.templates.update_template(template.id, version=7)
    with pytest.raises(TemplateValidationError):
        await engine.templates.update_template(
            template.id, steps=[{"name": "x", "order": 2}]
        )
    with pytest.raises(NotFoundError):
        await engine.templates.update_template("missing", description="x")


@pytest.mark.asyncio
async def test_create_from_mapping(engine):
    template = await engine.templates.create_from_mapping(
        {"name": "Invoice", "entity_type": "invoice", "type": "review", "steps": STEPS}
    )
    assert template.type.value == "review"

    with pytest.raises(TemplateValidationError):
        await engine.templates.create_from_mapping({"name": "x", "steps": STEPS})
    with pytest.raises(TemplateValidationError):
        await engine.templates.create_from_mapping(
            {"name": "x", "entity_type": "po", "steps": STEPS, "owner": "me"}
        )


@pytest.mark.asyncio
async def test_deactivate_hides_template(engine):
    template = await engine.templates.create_template(
        "Purchase order", "purchase_order", STEPS
    )
    await engine.templates.deactivate_template(template.id)
    assert await engine.templates.list_templates() == []
    assert len(await engine.templates.list_templates(active_only=False)) == 1
