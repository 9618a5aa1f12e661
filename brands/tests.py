"""
Tests for brands app - Brand profile management.
"""
import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user()
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.fixture
def create_brand(create_user):
    def _create_brand(user=None, name="Acme Running", **fields):
        from brands.models import Brand
        if user is None:
            user = create_user()
        return Brand.objects.create(user=user, name=name, **fields)
    return _create_brand


@pytest.mark.django_db
class TestBrandManagement:

    def test_list_brands(self, authenticated_client, create_brand):
        client, user = authenticated_client
        brand = create_brand(user=user)

        response = client.get('/api/v1/brands/')
        assert response.status_code == 200
        assert len(response.data['results']) == 1
        assert response.data['results'][0]['name'] == brand.name
        assert response.data['results'][0]['campaign_count'] == 0

    def test_create_brand(self, authenticated_client):
        from brands.models import Brand
        client, user = authenticated_client

        response = client.post(
            '/api/v1/brands/',
            data={
                'name': 'Trail Co',
                'website': 'https://trail.example.com',
                'brand_voice': 'Friendly and practical',
                'key_selling_points': ['Free returns', ' ', 'Lifetime warranty'],
            },
            format='json'
        )
        assert response.status_code == 201
        brand = Brand.objects.get(name='Trail Co')
        assert brand.user == user
        assert brand.key_selling_points == ['Free returns', 'Lifetime warranty']

    def test_create_brand_duplicate_name(self, authenticated_client, create_brand):
        client, user = authenticated_client
        create_brand(user=user, name='Duplicate')

        response = client.post('/api/v1/brands/', data={'name': 'Duplicate'}, format='json')
        assert response.status_code == 400
        assert 'name' in response.data

    def test_cannot_see_other_users_brands(self, authenticated_client, create_user, create_brand):
        client, user = authenticated_client
        other = create_user(email='other@example.com')
        foreign = create_brand(user=other, name='Not Mine')

        response = client.get('/api/v1/brands/')
        assert response.data['results'] == []

        response = client.get(f'/api/v1/brands/{foreign.id}/')
        assert response.status_code == 404

    def test_update_brand(self, authenticated_client, create_brand):
        client, user = authenticated_client
        brand = create_brand(user=user)

        response = client.patch(
            f'/api/v1/brands/{brand.id}/',
            data={'industry': 'Sporting goods'},
            format='json'
        )
        assert response.status_code == 200
        brand.refresh_from_db()
        assert brand.industry == 'Sporting goods'

    def test_prompt_context(self, create_brand):
        brand = create_brand(
            description='Running gear for beginners',
            key_selling_points=['Free returns'],
        )
        context = brand.as_prompt_context()
        assert context['name'] == 'Acme Running'
        assert context['description'] == 'Running gear for beginners'
        assert context['key_selling_points'] == ['Free returns']

    def test_requires_authentication(self, api_client):
        response = api_client.get('/api/v1/brands/')
        assert response.status_code == 401
