"""Key policy editing across every region of a multi-region key."""

import json
import logging
from typing import Protocol

from libs.kms.exceptions import InvalidPolicyError, UnchangedEditError
from libs.kms.multi_region_key import MultiRegionKey, canonical_policy

logger = logging.getLogger(__name__)


class Editor(Protocol):
    def edit(self, text: str, suffix: str = ".txt") -> str: ...


def prettify_policy(policy: str) -> str:
    """
    Re-indent a JSON policy with two spaces.

    Raises:
        InvalidPolicyError: policy is not valid JSON
    """
    try:
        return json.dumps(json.loads(policy), indent=2)
    except json.JSONDecodeError as e:
        raise InvalidPolicyError(f"Key policy is not valid JSON: {e}") from e


def edit_key_policy(
    mrk: MultiRegionKey,
    editor: Editor,
    force_region: str | None = None,
) -> str:
    """
    Edit the key policy once and apply it to every region.

    The current policy must agree across regions unless force_region names
    the region to take it from.

    Returns:
        The policy that was saved

    Raises:
        PolicyMismatchError: regions disagree and no force_region was given
        EditorError: editing aborted (no editor, empty, or unchanged)
        InvalidPolicyError: the edited text is not JSON
        PartialFailureError: saving failed in some regions
    """
    source_region, policy = mrk.authoritative_policy(force_region)
    current = prettify_policy(policy)

    edited = prettify_policy(editor.edit(current, suffix=".json"))
    if canonical_policy(edited) == canonical_policy(current):
        raise UnchangedEditError()

    mrk.set_key_policy(edited)
    logger.info(
        "New policy saved",
        extra={"context": {"alias": mrk.alias_name, "source_region": source_region}},
    )
    return edited
