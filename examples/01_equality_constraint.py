import numpy as np

from nonlin_min import minimize


def objective(p):
    return p[0] ** 2 + p[1] ** 2


# p1^2 + 1 - p2 == 0: the parabola p2 = p1^2 + 1, closest point to 0 is (0, 1)
def parabola(p):
    return np.array([p[0] ** 2 + 1.0 - p[1]])


res = minimize(objective, np.array([-2.0, 5.0]), {"equc": [parabola]})

p, objf, cvg, outp = res
print(res.summary(digits=6))
print("converged:", res.success, "lambda:", outp["lambda"])
assert res.success
assert np.allclose(p, [0.0, 1.0], atol=1e-4)
