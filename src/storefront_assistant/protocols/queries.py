"""Fixed Storefront API GraphQL documents, one per gateway operation."""

PRODUCT_FIELDS = """
fragment ProductFields on Product {
  id
  title
  handle
  description
  featuredImage { url }
  variants(first: 10) {
    edges {
      node {
        id
        title
        price { amount currencyCode }
        availableForSale
      }
    }
  }
}
"""

CART_FIELDS = """
fragment CartFields on Cart {
  id
  checkoutUrl
  totalQuantity
  lines(first: 50) {
    edges {
      node {
        id
        quantity
        merchandise {
          ... on ProductVariant {
            id
            title
            price { amount currencyCode }
            image { url }
            product { title featuredImage { url } }
          }
        }
      }
    }
  }
}
"""

SEARCH_PRODUCTS = (
    """
query searchProducts($query: String!, $first: Int!) {
  products(query: $query, first: $first) {
    edges { node { ...ProductFields } }
  }
}
"""
    + PRODUCT_FIELDS
)

CART_CREATE = (
    """
mutation cartCreate($input: CartInput!) {
  cartCreate(input: $input) {
    cart { ...CartFields }
    userErrors { field message }
  }
}
"""
    + CART_FIELDS
)

CART_LINES_ADD = (
    """
mutation cartLinesAdd($cartId: ID!, $lines: [CartLineInput!]!) {
  cartLinesAdd(cartId: $cartId, lines: $lines) {
    cart { ...CartFields }
    userErrors { field message }
  }
}
"""
    + CART_FIELDS
)

CART_LINES_REMOVE = (
    """
mutation cartLinesRemove($cartId: ID!, $lineIds: [ID!]!) {
  cartLinesRemove(cartId: $cartId, lineIds: $lineIds) {
    cart { ...CartFields }
    userErrors { field message }
  }
}
"""
    + CART_FIELDS
)

GET_CART = (
    """
query getCart($cartId: ID!) {
  cart(id: $cartId) { ...CartFields }
}
"""
    + CART_FIELDS
)

GET_CHECKOUT_URL = """
query getCheckoutUrl($cartId: ID!) {
  cart(id: $cartId) { checkoutUrl }
}
"""

CUSTOMER_ORDERS = """
query customerOrders($customerAccessToken: String!) {
  customer(customerAccessToken: $customerAccessToken) {
    orders(first: 20, reverse: true) {
      edges {
        node {
          id
          name
          orderNumber
          statusUrl
          fulfillmentStatus
          financialStatus
        }
      }
    }
  }
}
"""

CUSTOMER_ACCESS_TOKEN_CREATE = """
mutation customerAccessTokenCreate($input: CustomerAccessTokenCreateInput!) {
  customerAccessTokenCreate(input: $input) {
    customerAccessToken { accessToken expiresAt }
    customerUserErrors { code field message }
  }
}
"""

CUSTOMER_ACTIVE_CART = """
query customerActiveCart($customerAccessToken: String!) {
  customer(customerAccessToken: $customerAccessToken) {
    lastIncompleteCheckout { id }
  }
}
"""
