import pytest

from remixhub.core.exceptions import InvalidRepositoryURLError, MissingCredentialError, ValidationError
from remixhub.services.remixes import RemixSubmission, parse_github_url, plan_remix


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/widgets",
        "https://github.com/acme/widgets.git",
        "https://github.com/acme/widgets/",
        "http://www.github.com/acme/widgets",
        "github.com/acme/widgets",
        "https://github.com/acme/widgets/tree/main/src",
        "  https://github.com/acme/widgets  ",
    ],
)
def test_parse_github_url(url):
    ref = parse_github_url(url)
    assert (ref.owner, ref.repo) == ("acme", "widgets")
    assert ref.full_name == "acme/widgets"


def test_parse_keeps_dots_in_repo_name():
    assert parse_github_url("https://github.com/acme/widgets.js").repo == "widgets.js"


@pytest.mark.parametrize(
    "url",
    [
        "",
        None,
        "https://gitlab.com/acme/widgets",
        "https://github.com/acme",
        "https://github.com/",
        "not a url",
        "https://github.com/-acme/widgets",
    ],
)
def test_parse_rejects_non_repository_urls(url):
    with pytest.raises(InvalidRepositoryURLError) as exc:
        parse_github_url(url)
    assert exc.value.code == "INVALID_REPOSITORY_URL"
    assert exc.value.status_code == 400


def test_plan_uses_single_token_for_same_account():
    plan = plan_remix(
        RemixSubmission(
            source_repo="https://github.com/acme/widgets",
            dest_repo="https://github.com/me/widgets",
            github_token="ghp_one",
            dest_token="ghp_two",
        )
    )
    assert plan.source_token == plan.dest_token == "ghp_one"


def test_plan_uses_destination_token_across_accounts():
    plan = plan_remix(
        RemixSubmission(
            source_repo="https://github.com/acme/widgets",
            dest_repo="https://github.com/me/widgets",
            github_token="ghp_one",
            same_account=False,
            dest_token="ghp_two",
        )
    )
    assert plan.source_token == "ghp_one"
    assert plan.dest_token == "ghp_two"


def test_plan_requires_token():
    with pytest.raises(MissingCredentialError):
        plan_remix(
            RemixSubmission(
                source_repo="https://github.com/acme/widgets",
                dest_repo="https://github.com/me/widgets",
                github_token="  ",
            )
        )


def test_plan_rejects_copy_onto_itself():
    with pytest.raises(ValidationError):
        plan_remix(
            RemixSubmission(
                source_repo="https://github.com/acme/widgets",
                dest_repo="https://github.com/ACME/widgets.git",
                github_token="ghp_one",
            )
        )
