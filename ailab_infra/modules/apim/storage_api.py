"""
Storage API published on API Management.

Four operations front one blob container:

    GET    /files             list blobs as JSON ({"count": n, "files": [...]})
    PUT    /files/{filename}  upload a block blob
    GET    /files/{filename}  download
    DELETE /files/{filename}  delete

Callers present an Entra ID bearer token, validated at API level. APIM then
calls the blob endpoint with its system-assigned identity, which needs
"Storage Blob Data Contributor" on the account (`labctl grant-role storage
--apim ...`). The account is private, so the blob FQDN must resolve through
the privatelink zone linked to the shared VNet.
"""

from __future__ import annotations

from typing import Dict
from xml.sax.saxutils import escape

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.api_management import ApiManagement
from cdktf_cdktf_provider_azurerm.api_management_api import ApiManagementApi
from cdktf_cdktf_provider_azurerm.api_management_api_operation import (
    ApiManagementApiOperation,
    ApiManagementApiOperationTemplateParameter,
)
from cdktf_cdktf_provider_azurerm.api_management_api_operation_policy import (
    ApiManagementApiOperationPolicy,
)
from cdktf_cdktf_provider_azurerm.api_management_api_policy import ApiManagementApiPolicy
from cdktf_cdktf_provider_azurerm.api_management_backend import ApiManagementBackend
from cdktf_cdktf_provider_azurerm.data_azurerm_client_config import DataAzurermClientConfig

from ailab_infra.iac_types import StorageApiConfig


API_NAME = "storage-api"
BACKEND_NAME = "storage-blob"
STORAGE_RESOURCE = "https://storage.azure.com/"
BLOB_API_VERSION = "2023-11-03"

# operation id -> (method, url template, display name)
OPERATIONS: Dict[str, tuple] = {
    "list-files": ("GET", "/files", "List files"),
    "upload-file": ("PUT", "/files/{filename}", "Upload file"),
    "download-file": ("GET", "/files/{filename}", "Download file"),
    "delete-file": ("DELETE", "/files/{filename}", "Delete file"),
}


def blob_container_url(account_name: str, container: str) -> str:
    return f"https://{account_name}.blob.core.windows.net/{container}"


def jwt_policy(*, tenant_id: str, audience: str, backend_id: str = BACKEND_NAME) -> str:
    """API-level policy: validate the caller's token, then call blob storage as APIM."""
    tenant = escape(tenant_id)
    # v1 tokens (az account get-access-token) and v2 tokens carry different issuers
    return f"""<policies>
  <inbound>
    <base />
    <validate-jwt header-name="Authorization" failed-validation-httpcode="401" failed-validation-error-message="Unauthorized. Access token is missing or invalid." require-scheme="Bearer">
      <openid-config url="https://login.microsoftonline.com/{tenant}/v2.0/.well-known/openid-configuration" />
      <audiences>
        <audience>{escape(audience)}</audience>
      </audiences>
      <issuers>
        <issuer>https://sts.windows.net/{tenant}/</issuer>
        <issuer>https://login.microsoftonline.com/{tenant}/v2.0</issuer>
      </issuers>
    </validate-jwt>
    <set-backend-service backend-id="{escape(backend_id)}" />
    <authentication-managed-identity resource="{STORAGE_RESOURCE}" />
    <set-header name="x-ms-version" exists-action="override">
      <value>{BLOB_API_VERSION}</value>
    </set-header>
  </inbound>
  <backend>
    <base />
  </backend>
  <outbound>
    <base />
  </outbound>
  <on-error>
    <base />
  </on-error>
</policies>"""


_LIST_BODY = """@{
          var blobs = context.Response.Body.As<XDocument>().Descendants("Blob");
          var files = new JArray(blobs.Select(b => new JObject(
              new JProperty("name", (string)b.Element("Name")),
              new JProperty("size", (long)b.Element("Properties").Element("Content-Length")),
              new JProperty("lastModified", (string)b.Element("Properties").Element("Last-Modified")))));
          return new JObject(new JProperty("count", files.Count), new JProperty("files", files)).ToString();
        }"""


def operation_policy(operation_id: str) -> str:
    """Operation-level policy mapping the REST shape onto the Blob service API."""
    if operation_id == "list-files":
        inbound = """<rewrite-uri template="/" copy-unmatched-params="false" />
    <set-query-parameter name="restype" exists-action="override">
      <value>container</value>
    </set-query-parameter>
    <set-query-parameter name="comp" exists-action="override">
      <value>list</value>
    </set-query-parameter>"""
        outbound = f"""<choose>
      <when condition="@(context.Response.StatusCode == 200)">
        <set-header name="Content-Type" exists-action="override">
          <value>application/json</value>
        </set-header>
        <set-body>{_LIST_BODY}</set-body>
      </when>
    </choose>"""
    elif operation_id == "upload-file":
        inbound = """<rewrite-uri template="/{filename}" copy-unmatched-params="false" />
    <set-header name="x-ms-blob-type" exists-action="override">
      <value>BlockBlob</value>
    </set-header>"""
        outbound = ""
    elif operation_id in ("download-file", "delete-file"):
        inbound = '<rewrite-uri template="/{filename}" copy-unmatched-params="false" />'
        outbound = ""
    else:
        raise ValueError(f"Unknown storage API operation: {operation_id}")

    return f"""<policies>
  <inbound>
    <base />
    {inbound}
  </inbound>
  <backend>
    <base />
  </backend>
  <outbound>
    <base />
    {outbound}
  </outbound>
  <on-error>
    <base />
  </on-error>
</policies>"""


def provision_storage_api(
    *, scope: Construct, cfg: StorageApiConfig, apim: ApiManagement, rg_name: str
) -> ApiManagementApi:
    tenant_id = cfg.tenant_id or DataAzurermClientConfig(scope, "storageApiClientConfig").tenant_id

    backend = ApiManagementBackend(
        scope,
        "storageApiBackend",
        name=BACKEND_NAME,
        resource_group_name=rg_name,
        api_management_name=apim.name,
        protocol="http",
        url=blob_container_url(cfg.storage_account_name, cfg.container_name),
        description=f"Blob container {cfg.container_name} on {cfg.storage_account_name}",
    )

    api = ApiManagementApi(
        scope,
        "storageApi",
        name=API_NAME,
        resource_group_name=rg_name,
        api_management_name=apim.name,
        revision="1",
        display_name="Storage API",
        path=cfg.path,
        protocols=["https"],
        subscription_required=False,
    )

    ApiManagementApiPolicy(
        scope,
        "storageApiPolicy",
        api_name=api.name,
        api_management_name=apim.name,
        resource_group_name=rg_name,
        xml_content=jwt_policy(tenant_id=tenant_id, audience=cfg.audience),
        depends_on=[backend],
    )

    for operation_id, (method, url_template, display_name) in OPERATIONS.items():
        params = (
            [ApiManagementApiOperationTemplateParameter(name="filename", required=True, type="string")]
            if "{filename}" in url_template
            else None
        )
        operation = ApiManagementApiOperation(
            scope,
            f"storageApi-{operation_id}",
            operation_id=operation_id,
            api_name=api.name,
            api_management_name=apim.name,
            resource_group_name=rg_name,
            display_name=display_name,
            method=method,
            url_template=url_template,
            template_parameter=params,
        )
        ApiManagementApiOperationPolicy(
            scope,
            f"storageApi-{operation_id}-policy",
            api_name=api.name,
            api_management_name=apim.name,
            resource_group_name=rg_name,
            operation_id=operation.operation_id,
            xml_content=operation_policy(operation_id),
        )

    TerraformOutput(scope, "storage_api_url", value=f"{apim.gateway_url}/{cfg.path}")
    TerraformOutput(scope, "storage_api_audience", value=cfg.audience)
    TerraformOutput(scope, "storage_api_container", value=cfg.container_name)
    return api
