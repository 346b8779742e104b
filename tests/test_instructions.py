from datetime import date

from writebot.agent.instructions import DEFAULT_WRITING_CONTEXT, build_instructions, writing_task_context


def test_instructions_embed_date_and_default_context():
    text = build_instructions(today=date(2026, 10, 8))

    assert "Today's date is October 8, 2026." in text
    assert f"**Writing Context**: {DEFAULT_WRITING_CONTEXT}" in text
    assert "'web_search'" in text


def test_writing_task_becomes_context():
    context = writing_task_context("product launch email")

    assert context == "Writing Task: product launch email"
    assert "**Writing Context**: Writing Task: product launch email" in build_instructions(context)


def test_no_writing_task_means_no_context():
    assert writing_task_context(None) is None
    assert writing_task_context("") is None
