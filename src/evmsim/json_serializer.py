"""
JSON Serialization for evmsim output

Serializes parsed traces, transfers and simulation results into the camelCase
JSON shape consumed by the web app. Integers that can exceed 2**53 (wei
values, gas, decoded uint256 arguments) are emitted as decimal strings.
"""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from hexbytes import HexBytes

from .abi_utils import ParamType
from .selector_registry import DecodedError
from .simulation_service import SimulationResult
from .trace_parser import ParsedCallFrame, ParsedTrace, TraceStats
from .transfer_detector import TokenMetadata, TokenTransfer


class TraceSerializer:
    """Serializes trace data to JSON format compatible with the web app."""

    def _convert_to_serializable(self, obj: Any) -> Any:
        """Convert non-serializable objects to JSON-serializable format."""
        if isinstance(obj, bool) or obj is None:
            return obj
        elif isinstance(obj, int):
            return str(obj)
        elif isinstance(obj, Decimal):
            # fixed/ufixed values
            return str(obj)
        elif isinstance(obj, (HexBytes, bytes, bytearray)):
            return '0x' + bytes(obj).hex()
        elif isinstance(obj, ParamType):
            return self.serialize_param_type(obj)
        elif isinstance(obj, dict):
            return {k: self._convert_to_serializable(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_to_serializable(item) for item in obj]
        else:
            return obj

    def serialize_param_type(self, param_type: ParamType) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": param_type.name,
            "type": param_type.type,
            "baseType": param_type.base_type,
        }
        if param_type.components:
            data["components"] = [self.serialize_param_type(c) for c in param_type.components]
        if param_type.array_children is not None:
            data["arrayChildren"] = self.serialize_param_type(param_type.array_children)
            data["arrayLength"] = param_type.array_length
        return data

    def serialize_decoded_error(self, decoded_error: DecodedError) -> Dict[str, Any]:
        data = {
            "signature": decoded_error.signature,
            "name": decoded_error.name,
            "selector": decoded_error.selector,
        }
        if decoded_error.args is not None:
            data["args"] = self._convert_to_serializable(decoded_error.args)
        return data

    def serialize_frame(self, frame: ParsedCallFrame) -> Dict[str, Any]:
        """Serialize a parsed call frame and its sub-calls."""
        trace_call: Dict[str, Any] = {
            "type": frame.type,
            "from": frame.from_addr,
            "to": frame.to_addr,
            "value": str(frame.value),
            "gas": str(frame.gas),
            "gasUsed": str(frame.gas_used),
            "gasPercentage": frame.gas_percentage,
            "functionSignature": frame.function_signature,
            "functionName": frame.function_name,
            "input": frame.input,
            "depth": frame.depth,
        }

        # Add optional fields
        if frame.output is not None:
            trace_call["output"] = frame.output
        if frame.error is not None:
            trace_call["error"] = frame.error
        if frame.revert_reason is not None:
            trace_call["revertReason"] = frame.revert_reason
        if frame.decoded_input is not None:
            trace_call["decodedInput"] = self._convert_to_serializable(frame.decoded_input)
            trace_call["inputParamNames"] = list(frame.input_param_names)
            trace_call["inputParamTypes"] = [self.serialize_param_type(p) for p in frame.input_param_types]
        if frame.decoded_output is not None:
            trace_call["decodedOutput"] = self._convert_to_serializable(frame.decoded_output)
            trace_call["outputParamNames"] = list(frame.output_param_names)
            trace_call["outputParamTypes"] = [self.serialize_param_type(p) for p in frame.output_param_types]
        if frame.decoded_error is not None:
            trace_call["decodedError"] = self.serialize_decoded_error(frame.decoded_error)

        trace_call["calls"] = [self.serialize_frame(call) for call in frame.calls]
        return trace_call

    def serialize_stats(self, stats: TraceStats) -> Dict[str, Any]:
        data = {
            "totalGasUsed": str(stats.total_gas_used),
            "totalCalls": stats.total_calls,
            "maxDepth": stats.max_depth,
            "hasError": stats.has_error,
        }
        if stats.error_message is not None:
            data["errorMessage"] = stats.error_message
        return data

    def serialize_transfer(self, transfer: TokenTransfer) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": transfer.type,
            "from": transfer.from_addr,
            "to": transfer.to_addr,
            "amount": str(transfer.amount),
        }
        optional = {
            "tokenAddress": transfer.token_address,
            "tokenName": transfer.token_name,
            "tokenSymbol": transfer.token_symbol,
            "tokenDecimals": transfer.token_decimals,
            "formattedAmount": transfer.formatted_amount,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    def serialize_token_metadata(self, token_metadata: Dict[str, TokenMetadata]) -> Dict[str, Any]:
        return {
            address: {
                "address": metadata.address,
                "name": metadata.name,
                "symbol": metadata.symbol,
                "decimals": metadata.decimals,
            }
            for address, metadata in token_metadata.items()
        }

    def serialize_trace(
        self,
        parsed_trace: ParsedTrace,
        transfers: Optional[List[TokenTransfer]] = None,
        token_metadata: Optional[Dict[str, TokenMetadata]] = None,
        contract_names: Optional[Dict[str, str]] = None,
        chain_id: Optional[int] = None,
        etherscan_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Serialize a decoded trace with its transfers to JSON format for the web app."""
        response: Dict[str, Any] = {
            "traceCall": self.serialize_frame(parsed_trace.frame),
            "stats": self.serialize_stats(parsed_trace.stats),
            "transfers": [self.serialize_transfer(t) for t in transfers or []],
            "tokenMetadata": self.serialize_token_metadata(token_metadata or {}),
            "contractNames": dict(contract_names or {}),
        }
        if chain_id is not None:
            response["chainId"] = chain_id
        if etherscan_url is not None:
            response["etherscanUrl"] = etherscan_url
        return response

    def serialize_result(self, result: SimulationResult) -> Dict[str, Any]:
        """Serialize a full simulation result."""
        response: Dict[str, Any] = {"success": result.success}
        if result.parsed_trace is not None:
            response.update(self.serialize_trace(
                result.parsed_trace,
                transfers=result.transfers,
                token_metadata=result.token_metadata,
                contract_names=result.contract_names,
                chain_id=result.chain_id,
                etherscan_url=result.etherscan_url,
            ))
        else:
            if result.chain_id is not None:
                response["chainId"] = result.chain_id
            if result.etherscan_url is not None:
                response["etherscanUrl"] = result.etherscan_url
        if result.return_data is not None:
            response["returnData"] = result.return_data
        if result.error is not None:
            response["error"] = result.error
        if result.error_details is not None:
            response["errorDetails"] = result.error_details
        return response

    def to_json(self, data: Dict[str, Any], indent: Optional[int] = 2) -> str:
        return json.dumps(data, indent=indent)
