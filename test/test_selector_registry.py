"""
Unit tests for SelectorRegistry.
"""

import json

from evmsim.selector_registry import UNKNOWN, SelectorRegistry

from trace_helpers import ERC20_ABI


class TestLoading:
    """Tests for loading ABI documents."""

    def test_builtin_errors_without_abis(self, empty_registry):
        assert empty_registry.get_cache_stats() == {'function_count': 0, 'error_count': 2, 'documents': 0}
        assert empty_registry.get_error('0x08c379a0').signature == 'Error(string)'
        assert empty_registry.get_error('0x4e487b71').signature == 'Panic(uint256)'

    def test_functions_and_errors_are_registered(self, registry):
        stats = registry.get_cache_stats()
        # transfer, transferFrom, balanceOf; events and the constructor are ignored
        assert stats['function_count'] == 3
        assert stats['error_count'] == 3
        assert stats['documents'] == 1

    def test_json_text_documents(self):
        registry = SelectorRegistry([json.dumps(ERC20_ABI)], quiet_mode=True)
        assert registry.decode_selector('0xa9059cbb').name == 'transfer'

    def test_malformed_document_is_skipped_with_warning(self, capsys):
        registry = SelectorRegistry()
        added = registry.load(['{broken', {'not': 'an abi'}, ERC20_ABI])

        assert added == 4
        assert registry.get_cache_stats()['documents'] == 1
        assert registry.decode_selector('0xa9059cbb').name == 'transfer'
        err = capsys.readouterr().err
        assert 'Skipping malformed ABI #0' in err
        assert 'Skipping malformed ABI #1' in err

    def test_malformed_fragment_does_not_drop_document(self, capsys):
        document = [
            {'type': 'function', 'name': 'broken', 'inputs': [{'name': 'x', 'type': 'uint7x'}]},
            ERC20_ABI[0],
        ]
        registry = SelectorRegistry([document])

        assert registry.get_cache_stats()['function_count'] == 1
        assert registry.decode_selector('0xa9059cbb').signature == 'transfer(address,uint256)'
        assert 'Skipping malformed entry' in capsys.readouterr().err

    def test_first_registration_wins(self):
        first = [{
            'type': 'function', 'name': 'balanceOf',
            'inputs': [{'name': 'owner', 'type': 'address'}],
            'outputs': [{'name': 'first', 'type': 'uint256'}],
        }]
        second = [{
            'type': 'function', 'name': 'balanceOf',
            'inputs': [{'name': 'who', 'type': 'address'}],
            'outputs': [{'name': 'second', 'type': 'uint256'}],
        }]
        registry = SelectorRegistry([first], quiet_mode=True)

        assert registry.load([second]) == 0
        fragment = registry.get_function('0x70a08231')
        assert fragment.inputs[0].name == 'owner'
        assert fragment.outputs[0].name == 'first'

    def test_later_loads_only_add(self, registry):
        extra = [{'type': 'function', 'name': 'approve',
                  'inputs': [{'name': 'spender', 'type': 'address'}, {'name': 'amount', 'type': 'uint256'}]}]
        assert registry.load([extra]) == 1
        assert registry.decode_selector('0x095ea7b3').name == 'approve'
        assert registry.decode_selector('0xa9059cbb').name == 'transfer'


class TestDecodeSelector:
    """Tests for decode_selector."""

    def test_known_selector(self, registry):
        decoded = registry.decode_selector('0x23b872dd')
        assert decoded.name == 'transferFrom'
        assert decoded.signature == 'transferFrom(address,address,uint256)'
        assert decoded.selector == '0x23b872dd'

    def test_lookup_is_case_insensitive_and_prefix_optional(self, registry):
        assert registry.decode_selector('0xA9059CBB').name == 'transfer'
        assert registry.decode_selector('a9059cbb').name == 'transfer'

    def test_unknown_selector_falls_back(self, registry):
        decoded = registry.decode_selector('0xDEADBEEF')
        assert decoded.name == UNKNOWN
        assert decoded.signature == '0xdeadbeef'
        assert decoded.selector == '0xdeadbeef'

    def test_no_abi_and_unknown_selector_degrade_identically(self, registry, empty_registry):
        assert registry.decode_selector('0x12345678') == empty_registry.decode_selector('0x12345678')
