"""Tests for short id generation and allocation."""

import pytest

from aidetect_bot.services.short_id import (
    BLOCKED_TOKENS,
    SHORT_ID_ALPHABET,
    SHORT_ID_LENGTH,
    ShortIdAllocator,
    generate_candidate,
    is_rejected,
)


def scripted(*candidates):
    """Generator that replays fixed candidates."""
    it = iter(candidates)
    return lambda: next(it)


class TestCandidates:
    """Test candidate generation and filtering."""

    def test_generated_ids_use_alphabet_and_length(self):
        for _ in range(500):
            candidate = generate_candidate()
            assert len(candidate) == SHORT_ID_LENGTH
            assert set(candidate) <= set(SHORT_ID_ALPHABET)

    @pytest.mark.parametrize("candidate", ["xsex", "ass1", "kill", "dead", "0gun", "root"])
    def test_blocked_tokens_rejected(self, candidate):
        assert is_rejected(candidate)

    def test_repeated_characters_rejected(self):
        assert is_rejected("aaab")
        assert is_rejected("7777")
        assert not is_rejected("aab3")

    def test_clean_id_accepted(self):
        assert not is_rejected("k3p9")


class TestShortIdAllocator:
    """Test allocation against a storage check."""

    async def test_allocated_ids_never_contain_blocked_tokens(self):
        async def never_taken(_):
            return False

        allocator = ShortIdAllocator(never_taken)
        for _ in range(300):
            short_id = await allocator.allocate()
            assert short_id is not None
            assert not any(token in short_id for token in BLOCKED_TOKENS)

    async def test_collision_retries(self):
        taken = {"ab12"}
        checked = []

        async def exists(candidate):
            checked.append(candidate)
            return candidate in taken

        allocator = ShortIdAllocator(exists, generator=scripted("ab12", "cd34"))
        assert await allocator.allocate() == "cd34"
        assert checked == ["ab12", "cd34"]

    async def test_filtered_candidates_skip_storage_check(self):
        checked = []

        async def exists(candidate):
            checked.append(candidate)
            return False

        allocator = ShortIdAllocator(exists, generator=scripted("test", "zzzz", "q7w2"))
        assert await allocator.allocate() == "q7w2"
        assert checked == ["q7w2"]

    async def test_exhausted_attempts_return_none(self):
        async def always_taken(_):
            return True

        allocator = ShortIdAllocator(always_taken, max_attempts=10)
        assert await allocator.allocate() is None

    async def test_failed_check_counts_as_collision(self):
        async def broken(candidate):
            if candidate == "ab12":
                raise RuntimeError("database locked")
            return False

        allocator = ShortIdAllocator(broken, generator=scripted("ab12", "cd34"))
        assert await allocator.allocate() == "cd34"

    async def test_reserved_ids_are_skipped(self):
        async def never_taken(_):
            return False

        allocator = ShortIdAllocator(never_taken, generator=scripted("ab12", "cd34"))
        assert await allocator.allocate(reserved={"ab12"}) == "cd34"

    async def test_generator_output_is_lowercased(self):
        async def never_taken(_):
            return False

        allocator = ShortIdAllocator(never_taken, generator=scripted("AB12"))
        assert await allocator.allocate() == "ab12"
