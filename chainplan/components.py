import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress

from chainplan.constants import DEFAULT_INITIALIZER, DeploymentKind, StepStatus
from chainplan.errors import DeploymentConfigError, UnknownComponentError

CONTRACT_ARTIFACT_KEY = "artifact"
CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_LIBRARIES_KEY = "libraries"
CONTRACT_PROXY_PARAMETER_KEY = "proxy"
PROXY_INITIALIZER_KEY = "initializer"


class VariableContext:
    def __init__(
        self,
        component_names: List[str],
        component_name: str,
        constants: typing.Dict[str, Any] = None,
    ):
        self.component_names = component_names or list()
        self.component_name = component_name
        self.constants = constants or dict()


class ResolutionContext:
    """What a variable may resolve against at deployment time."""

    def __init__(self, ledger, deployer: Optional[ChecksumAddress] = None):
        self.ledger = ledger
        self.deployer = deployer


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, context: ResolutionContext) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self, context: ResolutionContext) -> Any:
        if context.deployer is None:
            raise DeploymentConfigError("'$deployer' used but no deployer account is set.")
        return context.deployer

    def __repr__(self):
        return "$deployer"


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise DeploymentConfigError(
                f"Constant '{constant_name}' not found in deployment file."
            )
        self.constant_name = constant_name

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self, context: ResolutionContext) -> Any:
        return self.constant_value

    def __repr__(self):
        return f"${self.constant_name}"


class ComponentAddress(Variable):
    def __init__(self, component_name: str, context: VariableContext):
        if component_name not in context.component_names:
            raise UnknownComponentError(component_name, referenced_by=context.component_name)
        self.component_name = component_name

    def resolve(self, context: ResolutionContext) -> ChecksumAddress:
        """Resolves the confirmed address of a component from the ledger."""
        return context.ledger.confirmed_address(self.component_name)

    def __repr__(self):
        return f"${self.component_name}"


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount()
    elif variable in context.component_names:
        return ComponentAddress(variable, context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ComponentAddress(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: typing.Dict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


def _resolve_param(value: Any, context: ResolutionContext) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v, context) for v in value]

    if isinstance(value, Variable):
        return value.resolve(context)

    return value  # literally a value


def resolve_params(parameters: OrderedDict, context: ResolutionContext) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value, context)

    return resolved_parameters


def _referenced_components(value: Any) -> List[str]:
    if isinstance(value, list):
        names = list()
        for v in value:
            names.extend(_referenced_components(v))
        return names
    if isinstance(value, ComponentAddress):
        return [value.component_name]
    return []


class Component:
    """A single deployable unit: a contract, or a logic contract behind a proxy."""

    def __init__(
        self,
        name: str,
        artifact: Optional[str] = None,
        arguments: Optional[OrderedDict] = None,
        libraries: Optional[List[str]] = None,
        kind: DeploymentKind = DeploymentKind.DIRECT,
        initializer: Optional[str] = None,
    ):
        self.name = name
        self.artifact = artifact or name
        self.arguments = arguments or OrderedDict()
        self.libraries = list(libraries or [])
        self.kind = kind
        if kind == DeploymentKind.PROXIED:
            self.initializer = initializer or DEFAULT_INITIALIZER
        else:
            self.initializer = None

    @property
    def proxied(self) -> bool:
        return self.kind == DeploymentKind.PROXIED

    @property
    def references(self) -> List[str]:
        """Names of components whose addresses appear in the arguments."""
        names = list()
        for value in self.arguments.values():
            for name in _referenced_components(value):
                if name not in names:
                    names.append(name)
        return names

    @property
    def dependencies(self) -> List[str]:
        """Library links first, then argument references, without duplicates."""
        names = list(self.libraries)
        for name in self.references:
            if name not in names:
                names.append(name)
        return names

    @classmethod
    def from_config(
        cls, contract_info: Any, component_names: List[str], constants: typing.Dict
    ) -> "Component":
        if isinstance(contract_info, str):
            return cls(name=contract_info)

        if not isinstance(contract_info, dict) or len(contract_info) != 1:
            raise DeploymentConfigError("Malformed contracts YAML.")

        name = list(contract_info.keys())[0]  # only one entry
        contract_data = contract_info[name] or dict()
        if not isinstance(contract_data, dict):
            raise DeploymentConfigError(f"Malformed contract config for {name}.")

        variable_context = VariableContext(
            component_names=component_names, component_name=name, constants=constants
        )
        arguments = _process_raw_values(
            contract_data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY) or dict(), variable_context
        )

        libraries = contract_data.get(CONTRACT_LIBRARIES_KEY) or list()
        for library in libraries:
            if library not in component_names:
                raise UnknownComponentError(library, referenced_by=name)

        kind, initializer = DeploymentKind.DIRECT, None
        if CONTRACT_PROXY_PARAMETER_KEY in contract_data:
            kind = DeploymentKind.PROXIED
            proxy_data = contract_data[CONTRACT_PROXY_PARAMETER_KEY] or dict()
            initializer = proxy_data.get(PROXY_INITIALIZER_KEY)

        return cls(
            name=name,
            artifact=contract_data.get(CONTRACT_ARTIFACT_KEY),
            arguments=arguments,
            libraries=libraries,
            kind=kind,
            initializer=initializer,
        )

    def __repr__(self):
        return f"Component({self.name}, {self.kind.value})"


class WiringEdge(NamedTuple):
    """A setter call on `target` that receives the confirmed address of `source`."""

    source: str
    target: str
    setter: str

    def __str__(self):
        return f"{self.target}.{self.setter}(${self.source})"

    @classmethod
    def from_config(cls, wiring_info: Any) -> List["WiringEdge"]:
        if not isinstance(wiring_info, dict) or len(wiring_info) != 1:
            raise DeploymentConfigError("Malformed wiring YAML.")

        target = list(wiring_info.keys())[0]
        setters = wiring_info[target] or dict()
        if not isinstance(setters, dict):
            raise DeploymentConfigError(f"Malformed wiring config for {target}.")

        edges = list()
        for setter, source in setters.items():
            if not Variable.is_variable(source):
                raise DeploymentConfigError(
                    f"Wiring value for {target}.{setter} must be a component reference, "
                    f"got '{source}'."
                )
            source = source[len(Variable.VARIABLE_PREFIX) :]
            edges.append(cls(source=source, target=target, setter=setter))
        return edges


class DeploymentStep:
    """The unit of work for one component within a single run."""

    def __init__(self, component: Component):
        self.component = component
        self.status = StepStatus.PENDING
        self.link_addresses: Dict[str, ChecksumAddress] = OrderedDict()
        self.arguments: OrderedDict = OrderedDict()
        self.handle = None
        self.address: Optional[ChecksumAddress] = None
        self.implementation: Optional[ChecksumAddress] = None
        self.error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.component.name

    @property
    def dependencies(self) -> List[str]:
        return self.component.dependencies

    def __repr__(self):
        return f"DeploymentStep({self.name}, {self.status.value})"
