from __future__ import annotations

import copy

from admissions.definition import ADMISSIONS_FORM, FormDefinition
from admissions.schemas import StepDefinition
from admissions.validation import StepValidator

from conftest import complete_record, document


validator = StepValidator(ADMISSIONS_FORM)


def test_optional_step_is_always_complete():
    step = StepDefinition(id=1, title="Extras", is_required=False, validation_fields=["essays.personalStatement"])
    assert validator.is_step_complete(step, {})
    assert validator.errors_for(step, {}) == []


def test_scalar_fields_need_non_blank_text():
    record = ADMISSIONS_FORM.default_record()
    step = ADMISSIONS_FORM.step(1)
    record["personalInfo"].update(firstName="   ", lastName="Lovelace", email="ada@example.com", phone="1")
    assert not validator.is_step_complete(step, record)
    record["personalInfo"]["firstName"] = "Ada"
    assert validator.is_step_complete(step, record)


def test_attachment_needs_marker_object_not_string():
    record = complete_record()
    step = ADMISSIONS_FORM.step(4)
    record["documents"]["cv"] = "cv.pdf"
    assert not validator.is_step_complete(step, record)
    record["documents"]["cv"] = document("cv")
    assert validator.is_step_complete(step, record)


def test_list_fields_use_minimum_cardinality():
    definition = FormDefinition(
        steps=[StepDefinition(id=1, title="References", validation_fields=["references"])],
        defaults={"references": []},
        min_items={"references": 2},
    )
    v = StepValidator(definition)
    step = definition.step(1)
    assert not v.is_step_complete(step, {"references": [{"name": "A"}]})
    assert v.is_step_complete(step, {"references": [{"name": "A"}, {"name": "B"}]})
    errors = v.errors_for(step, {"references": []})
    assert [e.message for e in errors] == ["At least 2 references are required"]


def test_errors_use_friendly_labels_and_fall_back_to_field_name():
    definition = FormDefinition(
        steps=[StepDefinition(id=1, title="Misc", validation_fields=["personalInfo.firstName", "extra.favouriteColour"])],
        defaults={},
        labels={"firstName": "First Name"},
    )
    errors = StepValidator(definition).errors_for(definition.step(1), {})
    assert [(e.field, e.message) for e in errors] == [
        ("personalInfo.firstName", "First Name is required"),
        ("extra.favouriteColour", "favouriteColour is required"),
    ]


def test_documents_errors_name_each_missing_upload():
    record = ADMISSIONS_FORM.default_record()
    messages = [e.message for e in validator.errors_for(ADMISSIONS_FORM.step(4), record)]
    assert messages == ["Letter of Interest is required", "Curriculum Vitae (CV) is required"]


def test_step_with_no_fields_is_complete():
    assert validator.is_step_complete(ADMISSIONS_FORM.step(5), {})


def test_adding_unrelated_data_never_uncompletes_a_step():
    base = complete_record()
    before = validator.completed_step_ids(base)
    additions = [
        ("essays", {"personalStatement": "extra text"}),
        ("references", [{"name": "Charles Babbage"}]),
        ("experience", {"skills": ["mathematics"]}),
        ("unknownSection", {"anything": True}),
    ]
    record = copy.deepcopy(base)
    for section, value in additions:
        record[section] = value
        assert set(before) <= set(validator.completed_step_ids(record))


def test_incomplete_steps_lists_required_titles():
    record = ADMISSIONS_FORM.default_record()
    titles = [s.title for s in validator.incomplete_steps(record)]
    assert titles == ["Personal Information", "Educational Background", "Program Information", "Documents"]


def test_falsy_scalars_count_as_missing():
    assert validator.is_present("education.gpa", 0) is False
    assert validator.is_present("education.graduated", False) is False
    assert validator.is_present("education.gpa", 3.7) is True
