import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from errors import DuplicateToken, InvalidAddress, PersistenceError, TokenNotFound
from whitelist import (
    DEFAULT_TOKENS,
    STORAGE_KEY,
    TokenConfig,
    WhitelistMatcher,
    WhitelistStore,
    currencies_match,
)

from tests.ledger_fakes import ISSUER, OTHER_ISSUER, WALLET_A, WALLET_B, RecordingObserver

DEFAULTS = (
    TokenConfig("SOLO", ISSUER, "Sologenic"),
    TokenConfig("CSC", OTHER_ISSUER, "CasinoCoin"),
    TokenConfig("ABC", WALLET_A, "Alpha"),
)


class WhitelistStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "storage.json"
        self.observer = RecordingObserver()
        self.store = WhitelistStore(self.path, DEFAULTS, observer=self.observer)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _stored(self) -> list:
        return json.loads(self.path.read_text())[STORAGE_KEY]

    def _write(self, entries: list) -> None:
        self.path.write_text(json.dumps({STORAGE_KEY: entries}))

    def test_load_seeds_defaults(self) -> None:
        tokens = self.store.load()
        self.assertEqual(tokens, list(DEFAULTS))
        self.assertTrue(self.path.exists())
        self.assertEqual(len(self._stored()), 3)
        self.assertIn("whitelist.seeded", self.observer.names())

        self.assertEqual(self.store.load(), list(DEFAULTS))
        self.assertEqual(self.observer.names().count("whitelist.seeded"), 1)

    def test_stored_format(self) -> None:
        self.store.load()
        self.assertEqual(
            self._stored()[0],
            {"currency": "SOLO", "issuer": ISSUER, "customName": "Sologenic"},
        )

    def test_short_list_is_forward_merged(self) -> None:
        manual = {"currency": "XYZ", "issuer": WALLET_B}
        self._write([{"currency": "CSC", "issuer": OTHER_ISSUER, "customName": "Mine"}, manual])

        tokens = self.store.load()
        self.assertEqual(tokens[0], TokenConfig("CSC", OTHER_ISSUER, "Mine"))
        self.assertEqual(tokens[1], TokenConfig("XYZ", WALLET_B))
        self.assertEqual(tokens[2:], [DEFAULTS[0], DEFAULTS[2]])
        self.assertEqual(len(self._stored()), 4)
        self.assertIn("whitelist.merged", self.observer.names())

    def test_full_length_list_is_left_alone(self) -> None:
        entries = [{"currency": c, "issuer": WALLET_B} for c in ("AAA", "BBB", "CCC")]
        self._write(entries)
        self.assertEqual([t.currency for t in self.store.load()], ["AAA", "BBB", "CCC"])

    def test_corrupt_storage_returns_defaults_without_overwriting(self) -> None:
        self.path.write_text("{not json")
        self.assertEqual(self.store.load(), list(DEFAULTS))
        self.assertEqual(self.path.read_text(), "{not json")
        self.assertIn("whitelist.load_failed", self.observer.names())

    def test_wrong_shape_returns_defaults(self) -> None:
        self._write([{"currency": 5}])
        self.assertEqual(self.store.load(), list(DEFAULTS))

    def test_other_namespaces_are_preserved(self) -> None:
        self.path.write_text(json.dumps({"theme": "dark"}))
        self.store.load()
        doc = json.loads(self.path.read_text())
        self.assertEqual(doc["theme"], "dark")
        self.assertIn(STORAGE_KEY, doc)

    def test_add_persists(self) -> None:
        token = TokenConfig("XYZ", WALLET_B, "Xyz")
        self.store.add(token)
        self.assertIn(token, WhitelistStore(self.path, DEFAULTS).load())

    def test_add_duplicate_rejected(self) -> None:
        self.store.load()
        before = self.path.read_text()
        with self.assertRaises(DuplicateToken):
            self.store.add(TokenConfig("SOLO", ISSUER, "Other name"))
        self.assertEqual(self.path.read_text(), before)

    def test_add_invalid_issuer_rejected(self) -> None:
        with self.assertRaises(InvalidAddress):
            self.store.add(TokenConfig("XYZ", "not-an-address"))
        self.assertFalse(self.path.exists())

    def test_remove(self) -> None:
        self.store.remove("SOLO", ISSUER)
        keys = [t.key for t in self.store.load()]
        self.assertNotIn(("SOLO", ISSUER), keys)

    def test_removed_defaults_stay_removed(self) -> None:
        self.store.load()
        self.store.remove("SOLO", ISSUER)
        self.store.remove("CSC", OTHER_ISSUER)

        reopened = WhitelistStore(self.path, DEFAULTS)
        self.assertEqual([t.key for t in reopened.load()], [("ABC", WALLET_A)])
        self.assertEqual([t.key for t in reopened.load()], [("ABC", WALLET_A)])
        self.assertNotIn("whitelist.merged", self.observer.names())

    def test_removed_default_can_be_added_back(self) -> None:
        self.store.remove("SOLO", ISSUER)
        self.store.add(TokenConfig("SOLO", ISSUER, "Again"))
        self.store.remove("CSC", OTHER_ISSUER)
        self.store.remove("SOLO", ISSUER)
        self.store.add(TokenConfig("SOLO", ISSUER, "Back"))
        tokens = self.store.load()
        self.assertIn(TokenConfig("SOLO", ISSUER, "Back"), tokens)
        self.assertNotIn(("CSC", OTHER_ISSUER), [t.key for t in tokens])

    def test_renamed_default_key_is_not_merged_back(self) -> None:
        self.store.load()
        self.store.update("CSC", OTHER_ISSUER, TokenConfig("CSC2", OTHER_ISSUER))
        self.store.remove("ABC", WALLET_A)
        keys = [t.key for t in self.store.load()]
        self.assertEqual(keys, [("SOLO", ISSUER), ("CSC2", OTHER_ISSUER)])

    def test_new_default_is_still_merged_after_removal(self) -> None:
        self.store.remove("SOLO", ISSUER)
        grown = WhitelistStore(self.path, DEFAULTS + (TokenConfig("NEW", WALLET_B, "New"),))
        self.store.remove("CSC", OTHER_ISSUER)
        keys = [t.key for t in grown.load()]
        self.assertIn(("NEW", WALLET_B), keys)
        self.assertNotIn(("SOLO", ISSUER), keys)
        self.assertNotIn(("CSC", OTHER_ISSUER), keys)

    def test_remove_unknown_still_persists(self) -> None:
        self.store.remove("NOPE", WALLET_B)
        self.assertTrue(self.path.exists())
        self.assertNotIn(("NOPE", WALLET_B), [t.key for t in self.store.load()])

    def test_update_in_place(self) -> None:
        self.store.load()
        new = TokenConfig("CSC2", OTHER_ISSUER, "Renamed")
        self.store.update("CSC", OTHER_ISSUER, new)
        tokens = self.store.load()
        self.assertEqual(tokens[1], new)
        self.assertEqual(len(tokens), 3)

    def test_update_same_key_new_name(self) -> None:
        self.store.load()
        self.store.update("CSC", OTHER_ISSUER, TokenConfig("CSC", OTHER_ISSUER, "Casino"))
        self.assertEqual(self.store.load()[1].custom_name, "Casino")

    def test_update_missing_key(self) -> None:
        self.store.load()
        before = self.path.read_text()
        with self.assertRaises(TokenNotFound):
            self.store.update("NOPE", WALLET_B, TokenConfig("NOPE", WALLET_B))
        self.assertEqual(self.path.read_text(), before)

    def test_update_to_existing_key(self) -> None:
        self.store.load()
        with self.assertRaises(DuplicateToken):
            self.store.update("CSC", OTHER_ISSUER, TokenConfig("SOLO", ISSUER))

    def test_update_invalid_issuer(self) -> None:
        with self.assertRaises(InvalidAddress):
            self.store.update("CSC", OTHER_ISSUER, TokenConfig("CSC", "bad"))

    def test_save_failure_raises_persistence_error(self) -> None:
        with mock.patch("whitelist.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(PersistenceError):
                self.store.save(list(DEFAULTS))
        self.assertEqual(list(self.path.parent.glob("*.tmp")), [])

    def test_seed_survives_write_failure(self) -> None:
        with mock.patch("whitelist.os.replace", side_effect=OSError("read-only")):
            self.assertEqual(self.store.load(), list(DEFAULTS))
        self.assertIn("whitelist.save_failed", self.observer.names())

    def test_default_seed_list_is_well_formed(self) -> None:
        from providers.xrpl import is_valid_address

        for token in DEFAULT_TOKENS:
            self.assertTrue(token.currency)
            self.assertTrue(token.custom_name)
            self.assertTrue(is_valid_address(token.issuer))


class MatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.matcher = WhitelistMatcher(
            [
                TokenConfig("ABC", ISSUER, "Alpha"),
                TokenConfig("534F4C4F00000000000000000000000000000000", OTHER_ISSUER, "Solo"),
                TokenConfig("Sologenic", WALLET_B),
            ]
        )

    def test_plain_match_is_case_insensitive(self) -> None:
        self.assertTrue(self.matcher.is_whitelisted("ABC", ISSUER))
        self.assertTrue(self.matcher.is_whitelisted("abc", ISSUER))

    def test_issuer_must_match(self) -> None:
        self.assertFalse(self.matcher.is_whitelisted("ABC", WALLET_A))

    def test_issuer_is_trimmed_and_case_insensitive(self) -> None:
        self.assertTrue(self.matcher.is_whitelisted("ABC", f"  {ISSUER.upper()} "))

    def test_hex_observed_matches_plain_entry(self) -> None:
        self.assertTrue(
            self.matcher.is_whitelisted("4142430000000000000000000000000000000000", ISSUER)
        )

    def test_hex_observed_matches_encoded_entry(self) -> None:
        observed = "536F6C6F67656E69630000000000000000000000"
        self.assertTrue(self.matcher.is_whitelisted(observed, WALLET_B))
        self.assertTrue(self.matcher.is_whitelisted(observed.lower(), WALLET_B))

    def test_hex_entry_matches_plain_observed(self) -> None:
        self.assertTrue(self.matcher.is_whitelisted("SOLO", OTHER_ISSUER))
        self.assertTrue(
            self.matcher.is_whitelisted("534f4c4f00000000000000000000000000000000", OTHER_ISSUER)
        )

    def test_different_currency_does_not_match(self) -> None:
        self.assertFalse(self.matcher.is_whitelisted("XYZ", ISSUER))
        self.assertFalse(
            self.matcher.is_whitelisted("58595A0000000000000000000000000000000000", ISSUER)
        )

    def test_match_returns_entry(self) -> None:
        self.assertEqual(self.matcher.match("abc", ISSUER).custom_name, "Alpha")
        self.assertIsNone(self.matcher.match("abc", WALLET_A))

    def test_empty_whitelist(self) -> None:
        self.assertFalse(WhitelistMatcher([]).is_whitelisted("ABC", ISSUER))

    def test_hex_with_trailing_newline_is_a_plain_code(self) -> None:
        padded = "4142430000000000000000000000000000000000\n"
        self.assertFalse(currencies_match(padded, "ABC"))
        self.assertFalse(self.matcher.is_whitelisted(padded, ISSUER))

    def test_currencies_match_is_symmetric(self) -> None:
        pairs = [
            ("ABC", "4142430000000000000000000000000000000000"),
            ("SOLO", "534F4C4F00000000000000000000000000000000"),
            ("usd", "USD"),
            ("XYZ", "ABC"),
        ]
        for a, b in pairs:
            self.assertEqual(currencies_match(a, b), currencies_match(b, a), (a, b))


if __name__ == "__main__":
    unittest.main()
