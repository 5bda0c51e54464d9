from rest_framework_simplejwt import views as jwt_views, tokens, authentication
from rest_framework import views as drf_views, generics, permissions, status
from django.db import transaction
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi


from . import serializers as my_serializers


class CustomTokenObtainPairView(jwt_views.TokenObtainPairView):
    serializer_class = my_serializers.CustomTokenObtainPairSerializer


class RegistrationAPIView(generics.CreateAPIView):
    """
    Handles new user registration.

    Creates a new user and returns the user's data along with JWT access and
    refresh tokens.
    """
    serializer_class = my_serializers.RegistrationSerializer
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @swagger_auto_schema(
        operation_summary="Register a new user",
        responses={
            201: my_serializers.RegistrationSerializer,
            400: "Invalid input"
        }
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            user = serializer.save()
            refresh = tokens.RefreshToken.for_user(user)

        return Response(
            {
                'success': True,
                'user': serializer.data,
                'refresh': str(refresh),
                'access': str(refresh.access_token)
            },
            status=status.HTTP_201_CREATED
        )


class UserProfileRetrieveUpdateAPIView(generics.RetrieveUpdateAPIView):
    """
    Allows authenticated users to retrieve and update their own profile.

    GET: Returns the profile of the currently authenticated user, including the
    subscription tier and KYC state used by the escrow flows.
    PATCH: Updates first_name, last_name, phone_number, country.
    """
    serializer_class = my_serializers.UserProfileSerializer
    authentication_classes = [authentication.JWTAuthentication]
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ['get', 'patch', 'head', 'options']

    @swagger_auto_schema(operation_summary="Retrieve user profile")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @swagger_auto_schema(operation_summary="Partially update user profile")
    def patch(self, request, *args, **kwargs):
        return super().patch(request, *args, **kwargs)

    def get_object(self):
        return self.request.user


class LogoutAPIView(drf_views.APIView):
    """
    Allows an authenticated user to log out by blacklisting their refresh token.
    """
    permission_classes = [permissions.IsAuthenticated]

    @swagger_auto_schema(
        operation_summary="Log out the user by blacklisting their refresh token",
        manual_parameters=[
            openapi.Parameter(
                'X-Refresh-Token',
                openapi.IN_HEADER,
                description="Refresh token to blacklist",
                type=openapi.TYPE_STRING,
                required=True
            )
        ],
        responses={
            200: "Logout successful",
            400: "Invalid token"
        }
    )
    def post(self, request):
        refresh_token = request.headers.get('X-Refresh-Token')
        if not refresh_token:
            return Response(
                {'success': False, 'error': 'VALIDATION_ERROR', 'message': 'X-Refresh-Token header is required.'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            token = tokens.RefreshToken(refresh_token)
            token.blacklist()
        except tokens.TokenError:
            return Response(
                {'success': False, 'error': 'INVALID_TOKEN', 'message': 'Invalid token.'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        return Response({'success': True, 'detail': "Logout successful."}, status=status.HTTP_200_OK)
