from fastapi import HTTPException, Request, status
from loguru import logger
from pydantic import ValidationError

from workloadsteal.admission.admission_controller import AdmissionController
from workloadsteal.admission.review import AdmissionReview, AdmissionReviewResponse
from workloadsteal.config import AdmissionConfig
from workloadsteal.server import WebServer


class WebhookServer(WebServer):
    """HTTPS front end serving the mutating and validating admission webhooks."""

    def __init__(
        self,
        config: AdmissionConfig,
        mutator: AdmissionController,
        validator: AdmissionController,
    ):
        self.mutator = mutator
        self.validator = validator
        super().__init__(config)

    def _setup_routes(self):
        self.app.add_api_route("/mutate", self.mutate, methods=["POST"])
        self.app.add_api_route("/validate", self.validate, methods=["POST"])
        self.app.add_api_route("/health", self.health, methods=["GET"])

    async def mutate(self, request: Request) -> dict:
        return await self._review(request, self.mutator)

    async def validate(self, request: Request) -> dict:
        return await self._review(request, self.validator)

    async def health(self) -> dict:
        return {"status": "ok"}

    async def _review(self, request: Request, controller: AdmissionController) -> dict:
        content_type = request.headers.get("content-type", "").split(";")[0].strip()
        if content_type != "application/json":
            logger.error("Unexpected content type {}, expected application/json", content_type)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"contentType={content_type}, expect application/json",
            )

        body = await request.body()
        if not body:
            logger.error("Request with no body")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request with no body")

        logger.debug("Handling request: {}", body)
        try:
            review = AdmissionReview.model_validate_json(body)
        except ValidationError as e:
            logger.error("Request could not be decoded: {}", e)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Request could not be decoded: {e}",
            )
        if review.request is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="AdmissionReview carries no request",
            )

        verdict = controller.decide(review.request.to_admission_request())
        response = AdmissionReview(
            apiVersion=review.apiVersion,
            response=AdmissionReviewResponse.from_verdict(verdict, uid=review.request.uid),
        )

        logger.debug("Sending response: {}", response)
        return response.model_dump(mode="json", exclude_none=True)
