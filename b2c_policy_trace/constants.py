"""Canonical constants for policy consolidation and trace reconstruction."""

from __future__ import annotations

B2C_NAMESPACE = "http://schemas.microsoft.com/online/cpim/schemas/2013/06"

KNOWN_NAMESPACE_PREFIXES: dict[str, str] = {
    "http://www.w3.org/2001/XMLSchema-instance": "xsi",
    "http://www.w3.org/2001/XMLSchema": "xs",
}

ATTRIBUTE_PREFIX = "@_"
TEXT_KEY = "#text"
XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'

ROOT_ELEMENT = "TrustFrameworkPolicy"

# Elements that are always lists after normalization.
REPEATABLE_ELEMENTS = (
    "UserJourney",
    "SubJourney",
    "OrchestrationStep",
    "Precondition",
    "ClaimsExchange",
    "ClaimsProviderSelection",
)

CONSOLIDATED_FILE_NAME = "ConsolidatedPolicy"
CONSOLIDATED_POLICY_ID = "Consolidated"

ENTITY_KINDS = (
    "claimTypes",
    "technicalProfiles",
    "claimsTransformations",
    "displayControls",
    "userJourneys",
    "subJourneys",
    "claimsProviders",
)

ENTITY_TYPE_NAMES: dict[str, str] = {
    "claimTypes": "ClaimType",
    "technicalProfiles": "TechnicalProfile",
    "claimsTransformations": "ClaimsTransformation",
    "displayControls": "DisplayControl",
    "userJourneys": "UserJourney",
    "subJourneys": "SubJourney",
    "claimsProviders": "ClaimsProvider",
}

# Sections merged by @_Id: (container path below the root, element name).
ID_MERGED_SECTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("BuildingBlocks", "ClaimsSchema"), "ClaimType"),
    (("BuildingBlocks", "ClaimsTransformations"), "ClaimsTransformation"),
    (("BuildingBlocks", "ContentDefinitions"), "ContentDefinition"),
    (("BuildingBlocks", "DisplayControls"), "DisplayControl"),
    (("BuildingBlocks", "Predicates"), "Predicate"),
    (("BuildingBlocks", "PredicateValidations"), "PredicateValidation"),
    (("UserJourneys",), "UserJourney"),
    (("SubJourneys",), "SubJourney"),
)

# Protocol names that mark a technical profile as a local utility profile.
PROTOCOL_LESS_NAMES = ("None",)

# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

JOURNEY_RECORDER_ENDPOINT = "urn:journeyrecorder:applicationinsights"

SUPPORTED_EVENT_INSTANCES = (
    "Event:AUTH",
    "Event:API",
    "Event:SELFASSERTED",
    "Event:ClaimsExchange",
)

NO_SUPPORTED_EVENTS_MESSAGE = (
    "No Event:AUTH, Event:API, Event:SELFASSERTED, or Event:ClaimsExchange logs found."
)

STEP_DEDUP_WINDOW_MS = 1000
ORCHESTRATION_RESET_MS = 1000

JOURNEY_NAME_PREFIXES = ("B2C_1A_", "DEV_", "PROD_", "TEST_", "GlobalApp_")


class ClipKind:
    HEADERS = "Headers"
    TRANSITION = "Transition"
    ACTION = "Action"
    PREDICATE = "Predicate"
    HANDLER_RESULT = "HandlerResult"
    EXCEPTION = "Exception"
    FATAL_EXCEPTION = "FatalException"


class StatebagKey:
    CTP = "CTP"
    ORCH_CS = "ORCH_CS"
    MACHSTATE = "MACHSTATE"
    TAGE = "TAGE"
    EID = "EID"
    PROT = "PROT"
    COMPLEX_CLAIMS = "Complex-CLMS"
    COMPLEX_API_RESULT = "Complex-API_RESULT"
    COMPLEX_ITEMS = "ComplexItems"


class RecordKey:
    INITIATING_CLAIMS_EXCHANGE = "InitiatingClaimsExchange"
    INITIATING_BACKEND_CLAIMS_EXCHANGE = "InitiatingBackendClaimsExchange"
    ENABLED_FOR_USER_JOURNEYS_TRUE = "EnabledForUserJourneysTrue"
    TECHNICAL_PROFILE_ENABLED = "TechnicalProfileEnabled"
    HOME_REALM_DISCOVERY = "HomeRealmDiscovery"
    VALIDATION = "Validation"
    VALIDATION_TECHNICAL_PROFILE = "ValidationTechnicalProfile"
    OUTPUT_CLAIMS_TRANSFORMATION = "OutputClaimsTransformation"
    CLAIMS_TRANSFORMATION = "ClaimsTransformation"
    GETTING_CLAIMS = "GettingClaims"
    INITIATING_OUTPUT_CLAIMS_TRANSFORMATION = "InitiatingOutputClaimsTransformation"
    INITIATING_INPUT_CLAIMS_TRANSFORMATION = "InitiatingInputClaimsTransformation"
    MAPPING_FROM_PARTNER_CLAIM_TYPE = "MappingFromPartnerClaimType"
    MAPPING_PARTNER_TYPE_FOR_CLAIM = "MappingPartnerTypeForClaim"
    SUB_JOURNEY = "SubJourney"
    SUB_JOURNEY_ID = "SubJourneyId"
    SUB_JOURNEY_INVOKED = "SubJourneyInvoked"
    TECHNICAL_PROFILE_ID = "TechnicalProfileId"
    DISPLAY_CONTROL_ACTION = "DisplayControlAction"
    VERIFICATION = "Verification"
    API_UI_MANAGER_INFO = "ApiUiManagerInfo"
    EXCEPTION = "Exception"
    ID = "Id"
    RESULT = "Result"
    INPUT_CLAIM = "InputClaim"
    INPUT_PARAMETER = "InputParameter"


class StepResult:
    SUCCESS = "Success"
    ERROR = "Error"
    SKIPPED = "Skipped"
    PENDING_INPUT = "PendingInput"


STEP_RESULT_PRIORITY: dict[str, int] = {
    StepResult.ERROR: 3,
    StepResult.PENDING_INPUT: 2,
    StepResult.SUCCESS: 1,
    StepResult.SKIPPED: 0,
}

# ---------------------------------------------------------------------------
# Engine handler names
# ---------------------------------------------------------------------------

_SMH = "Web.TPEngine.StateMachineHandlers."
_SSO = "Web.TPEngine.SSO."

ORCHESTRATION_MANAGER = "Web.TPEngine.OrchestrationManager"
SHOULD_STEP_BE_INVOKED = _SMH + "ShouldOrchestrationStepBeInvokedHandler"

CLAIMS_EXCHANGE_SERVICE_CALL = _SMH + "IsClaimsExchangeProtocolAServiceCallHandler"
CLAIMS_EXCHANGE_REDIRECTION = _SMH + "IsClaimsExchangeProtocolARedirectionHandler"
CLAIMS_EXCHANGE_API = _SMH + "IsClaimsExchangeProtocolAnApiHandler"

CLAIMS_EXCHANGE_ACTION = _SMH + "ClaimsExchangeActionHandler"
CLAIMS_EXCHANGE_REDIRECT = _SMH + "ClaimsExchangeRedirectHandler"
CLAIMS_EXCHANGE_SUBMIT = _SMH + "ClaimsExchangeSubmitHandler"
CLAIMS_EXCHANGE_SELECT = _SMH + "ClaimsExchangeSelectHandler"

INPUT_CLAIMS_TRANSFORMATION = _SMH + "InputClaimsTransformationHandler"
OUTPUT_CLAIMS_TRANSFORMATION = _SMH + "OutputClaimsTransformationHandler"
PERSISTED_CLAIMS_TRANSFORMATION = _SMH + "PersistedClaimsTransformationHandler"
CLIENT_INPUT_CLAIMS_TRANSFORMATION = _SMH + "ClientInputClaimsTransformationHandler"
CLAIMS_TRANSFORMATION_ACTION = _SMH + "ClaimsTransformationActionHandler"

HOME_REALM_DISCOVERY = _SMH + "HomeRealmDiscoveryHandler"
HOME_REALM_DISCOVERY_ACTION = _SMH + "HomeRealmDiscoveryActionHandler"

SELF_ASSERTED_VALIDATION = _SMH + "SelfAssertedMessageValidationHandler"
SELF_ASSERTED_ACTION = _SMH + "SelfAssertedAttributeProviderActionHandler"
SELF_ASSERTED_REDIRECT = _SMH + "SelfAssertedAttributeProviderRedirectHandler"

DISPLAY_CONTROL_ACTION_REQUEST = _SMH + "IsDisplayControlActionRequestHandler"
DISPLAY_CONTROL_ACTION_RESPONSE = _SMH + "SendDisplayControlActionResponseHandler"
CLAIM_VERIFICATION_REQUEST = _SMH + "IsClaimVerificationRequestHandler"

API_UI_MANAGER = "Web.TPEngine.Api.ApiUIManager"

ENQUEUE_NEW_JOURNEY = _SMH + "EnqueueNewJourneyHandler"
SUBJOURNEY_DISPATCH = _SMH + "SubJourneyDispatchActionHandler"
SUBJOURNEY_TRANSFER = _SMH + "SubJourneyTransferActionHandler"
SUBJOURNEY_EXIT = _SMH + "SubJourneyExitActionHandler"

SEND_CLAIMS = _SMH + "SendClaimsHandler"
SEND_CLAIMS_ACTION = _SMH + "SendClaimsActionHandler"
SEND_RP_RESPONSE = _SMH + "SendRelyingPartyResponseHandler"
SEND_RESPONSE = _SMH + "SendResponseHandler"

INITIATING_MESSAGE_VALIDATION = _SMH + "InitiatingMessageValidationHandler"
SEND_ERROR = _SMH + "SendErrorHandler"
VALIDATE_API_RESPONSE = _SMH + "ValidateApiResponseHandler"

SSO_RESET = _SSO + "ResetSSOSessionHandler"
SSO_PARTICIPANT = _SSO + "IsSSOSessionParticipantHandler"
SSO_SESSION = _SSO + "SSOSessionHandler"
SSO_ACTIVATE = _SSO + "ActivateSSOSessionHandler"

CLAIMS_EXCHANGE_PROTOCOL_HANDLERS = (
    CLAIMS_EXCHANGE_SERVICE_CALL,
    CLAIMS_EXCHANGE_REDIRECTION,
    CLAIMS_EXCHANGE_API,
)
CLAIMS_EXCHANGE_HANDLERS = (
    CLAIMS_EXCHANGE_ACTION,
    CLAIMS_EXCHANGE_REDIRECT,
    CLAIMS_EXCHANGE_SUBMIT,
    CLAIMS_EXCHANGE_SELECT,
)
CLAIMS_TRANSFORMATION_HANDLERS = (
    INPUT_CLAIMS_TRANSFORMATION,
    OUTPUT_CLAIMS_TRANSFORMATION,
    PERSISTED_CLAIMS_TRANSFORMATION,
    CLIENT_INPUT_CLAIMS_TRANSFORMATION,
    CLAIMS_TRANSFORMATION_ACTION,
)
HRD_HANDLERS = (HOME_REALM_DISCOVERY, HOME_REALM_DISCOVERY_ACTION)
SUBJOURNEY_HANDLERS = (
    ENQUEUE_NEW_JOURNEY,
    SUBJOURNEY_DISPATCH,
    SUBJOURNEY_TRANSFER,
    SUBJOURNEY_EXIT,
)
SSO_HANDLERS = (SSO_RESET, SSO_PARTICIPANT, SSO_SESSION, SSO_ACTIVATE)
STEP_COMPLETION_HANDLERS = (
    SEND_CLAIMS,
    SEND_CLAIMS_ACTION,
    SEND_RP_RESPONSE,
    SEND_RESPONSE,
)
ERROR_HANDLERS = (INITIATING_MESSAGE_VALIDATION, SEND_ERROR)
DISPLAY_CONTROL_HANDLERS = (
    DISPLAY_CONTROL_ACTION_REQUEST,
    DISPLAY_CONTROL_ACTION_RESPONSE,
    CLAIM_VERIFICATION_REQUEST,
)

PROTOCOL_PROVIDERS: dict[str, str] = {
    "REST": "RestfulProvider",
    "AAD": "AzureActiveDirectoryProvider",
    "OAUTH2": "OAuth2",
    "OIDC": "OpenIdConnect",
    "SAML": "SAML2",
}
