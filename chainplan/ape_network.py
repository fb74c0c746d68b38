import typing
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from ape import chain, compilers, networks, project
from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts.base import ContractContainer, ContractInstance, ContractTransactionHandler
from ape.exceptions import ApeException, TransactionNotFoundError
from eth_typing import ChecksumAddress
from ethpm_types import ContractType, MethodABI
from web3.auto import w3

from chainplan.artifacts import Artifact, ArtifactResolver
from chainplan.confirm import _confirm_resolution, _continue
from chainplan.constants import OZ_DEPENDENCY_NAME, OZ_DEPENDENCY_VERSION, PROXY_NAME
from chainplan.errors import ConfirmationFailedError, ConfirmationTimeoutError, SubmissionError
from chainplan.network import Confirmation, NetworkLayer, PendingHandle
from chainplan.utils import get_contract_container


def _validate_method_args(
    method_abis: List[MethodABI], args: typing.Sequence[Any]
) -> typing.Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise ValueError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for arg, abi_input in zip(args, abi.inputs):
            if not w3.is_encodable(abi_input.type, arg):
                break
            named_args[abi_input.name] = arg
        else:
            return named_args
    raise ValueError(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


def _constructor_params(container: ContractContainer, args: List[Any]) -> OrderedDict:
    """Names and type-checks positional constructor arguments against the ABI."""
    contract_name = container.contract_type.name
    abi_inputs = container.constructor.abi.inputs
    if len(args) != len(abi_inputs):
        raise SubmissionError(
            contract_name,
            f"constructor requires {len(abi_inputs)} parameters, got {len(args)}",
        )

    params = OrderedDict()
    for position, (abi_input, value) in enumerate(zip(abi_inputs, args)):
        if not w3.is_encodable(abi_input.type, value):
            raise SubmissionError(
                contract_name,
                f"constructor param '{abi_input.name}' at position {position} has a value "
                f"'{value}' whose type does not match expected ABI type '{abi_input.type}'",
            )
        params[abi_input.name or str(position)] = value
    return params


def _linked_library_names(contract_type: ContractType) -> List[str]:
    """Library names from the link references of the deployment bytecode."""
    bytecode = contract_type.deployment_bytecode
    names = list()
    for reference in (bytecode.link_references if bytecode else None) or []:
        if not reference.name:
            continue
        name = reference.name.split(":")[-1]
        if name not in names:
            names.append(name)
    return names


class ProjectArtifactResolver(ArtifactResolver):
    """Resolves artifacts from the compiled ape project and its dependencies."""

    def resolve(self, name: str) -> Artifact:
        container = get_contract_container(name)
        contract_type = container.contract_type
        abi = [entry.model_dump(by_alias=True, mode="json") for entry in contract_type.abi]
        bytecode = contract_type.deployment_bytecode
        return Artifact(
            name=contract_type.name,
            abi=abi,
            bytecode=bytecode.bytecode if bytecode else None,
            libraries=_linked_library_names(contract_type),
            source=container,
        )


class Transactor:
    """
    Represents an ape account plus validated/annotated transaction execution.
    """

    def __init__(self, account: typing.Optional[AccountAPI] = None, autosign: bool = False):
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        self._account.set_autosign(autosign)

    def get_account(self) -> AccountAPI:
        """Returns the transactor account."""
        return self._account

    def transact(self, method: ContractTransactionHandler, *args) -> ReceiptAPI:
        named_args = _validate_method_args(method_abis=method.abis, args=args)
        base_message = (
            f"\nTransacting {method.contract.contract_type.name}"
            f"[{method.contract.address[:10]}].{method}"
        )
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        return method(*args, sender=self._account)


class ApeNetwork(Transactor, NetworkLayer):
    """
    Network layer backed by an ape account on the connected provider.

    Proxied components are deployed as an OpenZeppelin TransparentUpgradeableProxy
    whose `_data` calls the initializer of the freshly deployed logic contract.
    """

    def __init__(
        self,
        account: typing.Optional[AccountAPI] = None,
        autosign: bool = False,
        publish: bool = False,
        required_confirmations: Optional[int] = None,
    ):
        super().__init__(account, autosign)
        self.publish = publish
        if required_confirmations is None:
            required_confirmations = networks.provider.network.required_confirmations
        self.required_confirmations = required_confirmations

    @property
    def deployer(self) -> ChecksumAddress:
        return self._account.address

    def _link(self, linked_addresses: Dict[str, ChecksumAddress]) -> None:
        for library_name, address in linked_addresses.items():
            library = get_contract_container(library_name).at(address)
            compilers.solidity.add_library(library)

    def _container(self, artifact: Artifact, linked_addresses: Dict[str, ChecksumAddress]):
        if linked_addresses:
            self._link(linked_addresses)
            # re-read after linking; the container bytecode changes
            return get_contract_container(artifact.name)
        if isinstance(artifact.source, ContractContainer):
            return artifact.source
        return get_contract_container(artifact.name)

    def _deploy_contract(self, container: ContractContainer, args: List[Any]) -> ContractInstance:
        contract_name = container.contract_type.name
        params = _constructor_params(container, args)
        if not self._autosign:
            _confirm_resolution(params, contract_name)
        try:
            return self._account.deploy(container, *args, publish=self.publish)
        except ApeException as e:
            raise SubmissionError(contract_name, str(e)) from e

    def submit_deployment(
        self, artifact: Artifact, args: List[Any], linked_addresses: Dict[str, ChecksumAddress]
    ) -> PendingHandle:
        container = self._container(artifact, linked_addresses)
        instance = self._deploy_contract(container, args)
        return PendingHandle(label=artifact.name, tx_hash=instance.txn_hash, payload=instance)

    def submit_proxied_deployment(
        self,
        artifact: Artifact,
        init_args: List[Any],
        linked_addresses: Dict[str, ChecksumAddress],
        initializer: str,
    ) -> PendingHandle:
        container = self._container(artifact, linked_addresses)
        logic = self._deploy_contract(container, [])

        try:
            data = getattr(logic, initializer).encode_input(*init_args)
        except (AttributeError, ApeException) as e:
            raise SubmissionError(artifact.name, f"cannot encode {initializer}: {e}") from e

        oz_dependency = project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]
        proxy_container = getattr(oz_dependency, PROXY_NAME)
        print(f"\nDeploying {PROXY_NAME} contract to proxy {artifact.name}.")
        proxy = self._deploy_contract(proxy_container, [logic.address, self.deployer, data])
        print(f"\nWrapping {artifact.name} into {PROXY_NAME} at {proxy.address}.")
        return PendingHandle(
            label=artifact.name,
            tx_hash=proxy.txn_hash,
            payload=proxy,
            implementation=logic.address,
        )

    def submit_call(self, target: ChecksumAddress, method: str, args: List[Any]) -> PendingHandle:
        try:
            instance = chain.contracts.instance_at(target)
            receipt = self.transact(getattr(instance, method), *args)
        except (AttributeError, ValueError, ApeException) as e:
            raise SubmissionError(f"{target}.{method}", str(e)) from e
        label = f"{instance.contract_type.name}.{method}"
        return PendingHandle(label=label, tx_hash=receipt.txn_hash, payload=receipt)

    def await_confirmation(self, handle: PendingHandle, timeout: Optional[int] = None) -> Confirmation:
        try:
            receipt = networks.provider.get_receipt(
                handle.tx_hash,
                required_confirmations=self.required_confirmations,
                timeout=timeout,
            )
        except TransactionNotFoundError as e:
            raise ConfirmationTimeoutError(handle.label, str(e)) from e
        except ApeException as e:
            raise ConfirmationFailedError(handle.label, str(e)) from e

        if receipt.failed:
            return Confirmation(success=False, error=f"transaction {handle.tx_hash} reverted")

        return Confirmation(
            success=True,
            address=receipt.contract_address,
            block_number=receipt.block_number,
            implementation=handle.implementation,
        )

    def recover(self, label: str, tx_hash: str) -> PendingHandle:
        return PendingHandle(label=label, tx_hash=tx_hash)
